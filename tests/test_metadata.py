# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

from fakes import DEFAULT_METADATA, ORG, FakeGithub
from github_access_manager.events import EventLog
from github_access_manager.metadata import configure_org_meta, metadata_delta
from github_access_manager.model import OrgMetadata, RepositoryPermissionGlobal


def test_metadata_delta_ignores_unset_fields():
    assert metadata_delta(DEFAULT_METADATA, OrgMetadata()) == {}


def test_metadata_delta_only_contains_changes():
    want = OrgMetadata(
        company="Acme",
        description="New",
        default_repository_permission=RepositoryPermissionGlobal.NONE,
    )
    assert metadata_delta(DEFAULT_METADATA, want) == {
        "description": "New",
        "default_repository_permission": RepositoryPermissionGlobal.NONE,
    }


def test_configure_org_meta_noop_when_equal():
    github = FakeGithub()
    configure_org_meta(github, ORG, OrgMetadata(company="Acme"), EventLog(forward_to=None))
    assert github.calls == []


def test_configure_org_meta_sends_single_edit():
    github = FakeGithub()
    want = OrgMetadata(location="Mars", has_repository_projects=False)
    configure_org_meta(github, ORG, want, EventLog(forward_to=None))

    assert len(github.calls) == 1
    _, sent = github.calls[0]
    assert sent == DEFAULT_METADATA._replace(location="Mars", has_repository_projects=False)

    # Applying it again changes nothing.
    configure_org_meta(github, ORG, want, EventLog(forward_to=None))
    assert len(github.calls) == 1

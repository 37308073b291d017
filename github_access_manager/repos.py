# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Creating and updating the repositories of an organization. Repositories that
exist on GitHub but not in the config are left alone; we never delete
repositories.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from .clients import RepoClient
from .config import Options
from .errors import (
    ApiError,
    PolicyError,
    ReconcileError,
    ValidationError,
    raise_aggregate,
    with_context,
)
from .events import EventLog
from .model import (
    REPO_SETTINGS,
    FullRepo,
    RepoRequest,
    RepoSpec,
    RepoSummary,
)
from .validation import validate_repos


def new_repo_create_request(name: str, repo: RepoSpec) -> RepoRequest:
    settings: Dict[str, Any] = {
        key: getattr(repo, key)
        for key in REPO_SETTINGS
        # Neither can be set when creating a repository, they get applied by
        # the update that follows.
        if key not in ("archived", "default_branch")
    }
    if repo.on_create is not None:
        settings.update(repo.on_create._asdict())
    return RepoRequest(name=name, **settings)


def new_repo_update_request(current: FullRepo, name: str, repo: RepoSpec) -> RepoRequest:
    """
    The minimal update request that turns the current repo into the target
    state. Settings that are not configured are not touched.
    """
    delta: Dict[str, Any] = {}
    if current.name != name:
        delta["name"] = name
    for key in REPO_SETTINGS:
        want = getattr(repo, key)
        if want is not None and want != getattr(current, key):
            delta[key] = want
    return RepoRequest(**delta)


def sanitize_repo_delta(
    options: Options, delta: RepoRequest
) -> Tuple[RepoRequest, List[PolicyError]]:
    """
    Remove changes that we refuse to make from the delta. The rest of the
    delta still gets applied.
    """
    errors: List[PolicyError] = []
    if delta.archived is False:
        delta = delta._replace(archived=None)
        errors.append(
            PolicyError("asked to unarchive an archived repo, unsupported by GH API")
        )
    if delta.archived is True and not options.allow_repo_archival:
        delta = delta._replace(archived=None)
        errors.append(
            PolicyError(
                "asked to archive a repo but this is not allowed by default "
                "(see --allow-repo-archival)"
            )
        )
    if delta.private is False and not options.allow_repo_publish:
        delta = delta._replace(private=None)
        errors.append(
            PolicyError(
                "asked to publish a private repo but this is not allowed by default "
                "(see --allow-repo-publish)"
            )
        )
    return delta, errors


def resolve_repos(
    repos: Mapping[str, RepoSpec], repo_list: List[RepoSummary]
) -> Dict[str, Optional[RepoSummary]]:
    """
    Find the existing repository for every configured one, by its name or one
    of its previous names. Repository names are case-insensitive on GitHub.
    Raises ValidationError before anything is changed when the config is
    ambiguous, or asks for something we cannot do.
    """
    validate_repos(repos)

    by_name = {repo.name.lower(): repo for repo in repo_list}
    resolved: Dict[str, Optional[RepoSummary]] = {}
    problems: List[str] = []

    for want_name, want in sorted(repos.items()):
        existing: Optional[RepoSummary] = None
        for possible_name in (want_name, *want.previous_names):
            repo = by_name.get(possible_name.lower())
            if repo is None:
                continue
            if existing is None:
                existing = repo
            elif existing.name != repo.name:
                problems.append(
                    "different repos already exist for current and previous names: "
                    f"{existing.name} and {repo.name}"
                )

        # A repository can only be archived after it has been created.
        if existing is None and want.archived:
            problems.append(f"nonexistent repo configured as archived: {want_name}")

        resolved[want_name] = existing

    if len(problems) > 0:
        raise ValidationError("; ".join(problems))

    return resolved


def configure_repo(
    options: Options,
    client: RepoClient,
    org_name: str,
    name: str,
    want: RepoSpec,
    summary: Optional[RepoSummary],
    events: EventLog,
) -> None:
    if summary is None:
        events.info("create-repo", f"Repo {name} does not exist, creating", repo=name)
        try:
            existing = client.create_repo(org_name, new_repo_create_request(name, want))
        except ApiError as err:
            events.error("create-repo-failed", f"Failed to create repo {name}: {err}", repo=name)
            raise with_context(f"failed to create repo {name}", err) from err
    else:
        try:
            existing = client.get_repo(org_name, summary.name)
        except ApiError as err:
            events.error("get-repo-failed", f"Failed to get repo {summary.name}: {err}", repo=name)
            raise with_context(f"failed to get repo {summary.name}", err) from err

    if existing.archived and want.archived:
        events.info("skip-archived", f"Repo {name} is archived, skipping changes", repo=name)
        return

    delta, errors = sanitize_repo_delta(
        options, new_repo_update_request(existing, name, want)
    )
    for error in errors:
        events.error(
            "repo-change-refused",
            f"Requested change of repo {name} is not allowed, removing from delta: {error}",
            repo=name,
        )

    all_errors: List[Exception] = list(errors)
    if delta.is_defined():
        events.info(
            "update-repo",
            f"Repo {name} differs from desired state, updating "
            + ", ".join(sorted(delta.as_json())),
            repo=name,
        )
        try:
            client.update_repo(org_name, existing.name, delta)
        except ApiError as err:
            events.error("update-repo-failed", f"Failed to update repo {name}: {err}", repo=name)
            all_errors.append(with_context(f"failed to update repo {name}", err))

    raise_aggregate(all_errors)


def configure_repos(
    options: Options,
    client: RepoClient,
    org_name: str,
    repos: Mapping[str, RepoSpec],
    events: EventLog,
) -> None:
    repo_list = client.list_repos(org_name)
    events.debug("list-repos", f"Found {len(repo_list)} repositories")
    resolved = resolve_repos(repos, repo_list)

    errors: List[Exception] = []
    for name, want in sorted(repos.items()):
        try:
            configure_repo(options, client, org_name, name, want, resolved[name], events)
        except ReconcileError as err:
            errors.append(err)

    raise_aggregate(errors)

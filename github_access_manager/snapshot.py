# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Build a config from the current state of an organization. This is useful to
start managing an existing organization: dump it once, and commit the result.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from .clients import SnapshotClient
from .errors import ApiError, ValidationError, with_context
from .events import EventLog
from .model import (
    FullRepo,
    OrganizationRole,
    OrgSpec,
    Privacy,
    RepoSpec,
    TeamRole,
    TeamSpec,
)

# Values that GitHub uses for a new repository. Dumped repositories omit
# settings that have these values, to keep the output short.
REPO_DEFAULTS: Dict[str, object] = {
    "description": "",
    "homepage": "",
    "private": False,
    "has_issues": True,
    "has_projects": True,
    "has_wiki": True,
    "allow_merge_commit": True,
    "allow_squash_merge": True,
    "allow_rebase_merge": True,
    "archived": False,
    "default_branch": "main",
}


def prune_repo_defaults(repo: RepoSpec) -> RepoSpec:
    pruned = {
        key: None
        for key, default in REPO_DEFAULTS.items()
        if getattr(repo, key) == default
    }
    return repo._replace(**pruned)


def repo_spec_from_full_repo(full: FullRepo) -> RepoSpec:
    return prune_repo_defaults(
        RepoSpec(
            description=full.description,
            homepage=full.homepage,
            private=full.private,
            has_issues=full.has_issues,
            has_projects=full.has_projects,
            has_wiki=full.has_wiki,
            allow_merge_commit=full.allow_merge_commit,
            allow_squash_merge=full.allow_squash_merge,
            allow_rebase_merge=full.allow_rebase_merge,
            archived=full.archived,
            default_branch=full.default_branch,
        )
    )


def dump(
    client: SnapshotClient,
    org_name: str,
    ignore_secret_teams: bool,
    app_id: Optional[str],
    events: EventLog,
) -> OrgSpec:
    """
    Read the organization into an OrgSpec. Only org admins can see the full
    picture, so this refuses to run unless the token belongs to an admin, or
    to a GitHub App.
    """
    try:
        metadata = client.get_org(org_name)
        running_as = client.bot_user()
        admins = client.list_org_members(org_name, OrganizationRole.ADMIN)
    except ApiError as err:
        raise with_context(f"failed to read {org_name}", err) from err

    events.debug("list-admins", f"Found {len(admins)} admins")
    if app_id is None and running_as.lower() not in {a.lower() for a in admins}:
        raise ValidationError("dump must be run with an admin:org scope token")

    members = client.list_org_members(org_name, OrganizationRole.MEMBER)
    events.debug("list-members", f"Found {len(members)} members")

    team_list = client.list_teams(org_name)
    events.debug("list-teams", f"Found {len(team_list)} teams")

    # Teams are stored flat, by id. The tree is rebuilt from the parent ids
    # once we have all of them.
    names: Dict[int, str] = {}
    by_id: Dict[int, TeamSpec] = {}
    parents: Dict[int, Optional[int]] = {}

    for team in team_list:
        if ignore_secret_teams and team.privacy == Privacy.SECRET:
            events.debug("skip-secret-team", f"Ignoring secret team {team.name}", id=team.team_id)
            continue
        try:
            maintainers = client.list_team_members(org_name, team.slug, TeamRole.MAINTAINER)
            team_members = client.list_team_members(org_name, team.slug, TeamRole.MEMBER)
            repos = client.list_team_repos(org_name, team.slug)
        except ApiError as err:
            raise with_context(f"failed to read team {team.team_id}({team.name})", err) from err

        events.debug(
            "record-team",
            f"Recording team {team.name} with {len(maintainers)} maintainers, "
            f"{len(team_members)} members and {len(repos)} repos",
            id=team.team_id,
        )
        names[team.team_id] = team.name
        parents[team.team_id] = team.parent_team_id
        by_id[team.team_id] = TeamSpec(
            description=team.description,
            privacy=team.privacy,
            maintainers=tuple(sorted(maintainers)),
            members=tuple(sorted(team_members)),
            repos=dict(sorted(repos.items())),
        )

    children: Dict[int, List[int]] = {}
    tops: List[int] = []
    for team_id, parent_id in parents.items():
        # A team whose parent we skipped (because it is secret) is treated as
        # a top-level team, rather than silently dropped.
        if parent_id is None or parent_id not in by_id:
            tops.append(team_id)
        else:
            children.setdefault(parent_id, []).append(team_id)

    def make_team(team_id: int) -> TeamSpec:
        return by_id[team_id]._replace(
            children={names[c]: make_team(c) for c in children.get(team_id, [])}
        )

    repo_list = client.list_repos(org_name)
    events.debug("list-repos", f"Found {len(repo_list)} repos")
    repos_out: Dict[str, RepoSpec] = {}
    for summary in repo_list:
        try:
            full = client.get_repo(org_name, summary.name)
        except ApiError as err:
            raise with_context(f"failed to get repo {summary.name}", err) from err
        repos_out[full.name] = repo_spec_from_full_repo(full)

    return OrgSpec(
        name=org_name,
        metadata=metadata,
        admins=tuple(sorted(admins)),
        members=tuple(sorted(members)),
        teams={names[team_id]: make_team(team_id) for team_id in tops},
        repos=repos_out,
    )

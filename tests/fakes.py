# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
An in-memory GitHub organization that implements every client protocol, and
records every mutating call it receives.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from github_access_manager.errors import ApiError, NotFoundError
from github_access_manager.github import slugify
from github_access_manager.model import (
    FullRepo,
    LiveTeam,
    OrgMetadata,
    OrganizationRole,
    PermissionLevel,
    Privacy,
    RepoRequest,
    RepoSummary,
    RepositoryPermissionGlobal,
    TeamRole,
)

ORG = "acme"

DEFAULT_METADATA = OrgMetadata(
    billing_email="billing@acme.example",
    company="Acme",
    email="",
    display_name="Acme Co",
    description="",
    location="",
    default_repository_permission=RepositoryPermissionGlobal.READ,
    has_organization_projects=True,
    has_repository_projects=True,
    members_can_create_repositories=False,
)


def new_full_repo(repo_id: int, name: str, **settings: Any) -> FullRepo:
    repo = FullRepo(
        repo_id=repo_id,
        name=name,
        description="",
        homepage="",
        private=False,
        has_issues=True,
        has_projects=True,
        has_wiki=True,
        allow_merge_commit=True,
        allow_squash_merge=True,
        allow_rebase_merge=True,
        squash_merge_commit_title="",
        squash_merge_commit_message="",
        archived=False,
        default_branch="main",
    )
    return repo._replace(**settings)


class FakeGithub:
    def __init__(self, me: str = "root") -> None:
        self.me = me
        self.metadata = DEFAULT_METADATA
        self.admins: Set[str] = set()
        self.members: Set[str] = set()
        self.invitations: List[str] = []
        # Logins that GitHub does not know about.
        self.unknown_users: Set[str] = set()
        # Logins that end up with a pending invitation when granted.
        self.invite_only: Set[str] = set()

        self.teams: Dict[int, LiveTeam] = {}
        self.team_members: Dict[int, Dict[str, TeamRole]] = {}
        self.team_invitations: Dict[int, List[str]] = {}
        self.team_repos: Dict[int, Dict[str, PermissionLevel]] = {}
        self.repos: Dict[str, FullRepo] = {}

        self.calls: List[Tuple[Any, ...]] = []
        self.failures: Dict[Tuple[str, str], ApiError] = {}
        self.next_id = 1000

    # Setup helpers.

    def add_team(
        self,
        team_id: int,
        name: str,
        privacy: Privacy = Privacy.CLOSED,
        parent_team_id: Optional[int] = None,
        description: str = "",
        slug: Optional[str] = None,
    ) -> LiveTeam:
        team = LiveTeam(
            team_id=team_id,
            slug=slug or slugify(name),
            name=name,
            description=description,
            privacy=privacy,
            parent_team_id=parent_team_id,
        )
        self.teams[team_id] = team
        self.team_members[team_id] = {}
        self.team_invitations[team_id] = []
        self.team_repos[team_id] = {}
        return team

    def add_repo(self, repo: FullRepo) -> None:
        self.repos[repo.name] = repo

    def fail(self, method: str, key: str, error: Optional[ApiError] = None) -> None:
        self.failures[(method, key)] = error or ApiError(f"{method} {key} failed", 500)

    def team(self, name: str) -> LiveTeam:
        return next(t for t in self.teams.values() if t.name == name)

    # Internals.

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))

    def _check(self, method: str, key: str) -> None:
        error = self.failures.get((method, key))
        if error is not None:
            raise error

    def _team(self, slug: str) -> LiveTeam:
        for team in self.teams.values():
            if team.slug == slug:
                return team
        raise NotFoundError(f"team {slug} not found", 404)

    def _repo(self, name: str) -> FullRepo:
        for repo in self.repos.values():
            if repo.name.lower() == name.lower():
                return repo
        raise NotFoundError(f"repo {name} not found", 404)

    # OrgMetadataClient

    def get_org(self, org: str) -> OrgMetadata:
        return self.metadata

    def edit_org(self, org: str, metadata: OrgMetadata) -> OrgMetadata:
        self._record("edit_org", metadata)
        self._check("edit_org", org)
        self.metadata = metadata
        return metadata

    # InviteClient

    def list_org_invitations(self, org: str) -> List[str]:
        return list(self.invitations)

    # OrgMembersClient

    def bot_user(self) -> str:
        return self.me

    def list_org_members(self, org: str, role: OrganizationRole) -> List[str]:
        if role == OrganizationRole.ADMIN:
            return sorted(self.admins)
        return sorted(self.members)

    def update_org_membership(self, org: str, login: str, admin: bool) -> str:
        self._record("update_org_membership", login, admin)
        self._check("update_org_membership", login)
        if login in self.unknown_users:
            raise NotFoundError(f"user {login} not found", 404)
        if login in self.invite_only:
            self.invitations.append(login)
            return "pending"
        self.admins.discard(login)
        self.members.discard(login)
        (self.admins if admin else self.members).add(login)
        return "active"

    def remove_org_membership(self, org: str, login: str) -> None:
        self._record("remove_org_membership", login)
        self._check("remove_org_membership", login)
        if login not in self.admins | self.members | set(self.invitations):
            raise NotFoundError(f"{login} is not a member", 404)
        self.admins.discard(login)
        self.members.discard(login)
        self.invitations = [i for i in self.invitations if i != login]

    # TeamClient

    def list_teams(self, org: str) -> List[LiveTeam]:
        return list(self.teams.values())

    def create_team(
        self,
        org: str,
        name: str,
        description: str,
        privacy: Optional[Privacy],
    ) -> LiveTeam:
        self._record("create_team", name)
        self._check("create_team", name)
        self.next_id += 1
        return self.add_team(
            self.next_id,
            name,
            privacy=privacy or Privacy.SECRET,
            description=description,
        )

    def delete_team(self, org: str, slug: str) -> None:
        self._record("delete_team", slug)
        self._check("delete_team", slug)
        team = self._team(slug)
        del self.teams[team.team_id]

    # EditTeamClient

    def edit_team(self, org: str, team: LiveTeam) -> LiveTeam:
        self._record("edit_team", team.slug, team)
        self._check("edit_team", team.slug)
        live = self._team(team.slug)
        updated = team._replace(team_id=live.team_id, slug=slugify(team.name))
        self.teams[live.team_id] = updated
        return updated

    # TeamMembersClient

    def list_team_members(self, org: str, slug: str, role: TeamRole) -> List[str]:
        team = self._team(slug)
        return sorted(
            login for login, r in self.team_members[team.team_id].items() if r == role
        )

    def list_team_invitations(self, org: str, slug: str) -> List[str]:
        return list(self.team_invitations[self._team(slug).team_id])

    def update_team_membership(
        self, org: str, slug: str, login: str, maintainer: bool
    ) -> str:
        self._record("update_team_membership", slug, login, maintainer)
        self._check("update_team_membership", login)
        team = self._team(slug)
        role = TeamRole.MAINTAINER if maintainer else TeamRole.MEMBER
        self.team_members[team.team_id][login] = role
        return "active"

    def remove_team_membership(self, org: str, slug: str, login: str) -> None:
        self._record("remove_team_membership", slug, login)
        self._check("remove_team_membership", login)
        members = self.team_members[self._team(slug).team_id]
        if login not in members:
            raise NotFoundError(f"{login} is not a member of {slug}", 404)
        del members[login]

    # TeamRepoClient

    def list_team_repos(self, org: str, slug: str) -> Dict[str, PermissionLevel]:
        return dict(self.team_repos[self._team(slug).team_id])

    def update_team_repo(
        self, org: str, slug: str, repo: str, level: PermissionLevel
    ) -> None:
        self._record("update_team_repo", slug, repo, level)
        self._check("update_team_repo", repo)
        self.team_repos[self._team(slug).team_id][repo] = level

    def remove_team_repo(self, org: str, slug: str, repo: str) -> None:
        self._record("remove_team_repo", slug, repo)
        self._check("remove_team_repo", repo)
        repos = self.team_repos[self._team(slug).team_id]
        if repo not in repos:
            raise NotFoundError(f"{slug} has no access to {repo}", 404)
        del repos[repo]

    # RepoClient

    def list_repos(self, org: str) -> List[RepoSummary]:
        return [
            RepoSummary(r.repo_id, r.name, r.private, r.archived)
            for r in self.repos.values()
        ]

    def get_repo(self, org: str, name: str) -> FullRepo:
        self._check("get_repo", name)
        return self._repo(name)

    def create_repo(self, org: str, request: RepoRequest) -> FullRepo:
        assert request.name is not None
        self._record("create_repo", request.name, request)
        self._check("create_repo", request.name)
        self.next_id += 1
        settings = {
            key: value
            for key, value in request.as_json().items()
            if key in FullRepo._fields and key != "name"
        }
        repo = new_full_repo(self.next_id, request.name, **settings)
        self.add_repo(repo)
        return repo

    def update_repo(self, org: str, name: str, request: RepoRequest) -> None:
        self._record("update_repo", name, request)
        self._check("update_repo", name)
        repo = self._repo(name)
        settings = {
            key: value
            for key, value in request.as_json().items()
            if key in FullRepo._fields
        }
        del self.repos[repo.name]
        self.add_repo(repo._replace(**settings))

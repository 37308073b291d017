# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
The parts of the GitHub API that each reconciliation phase needs. Every phase
depends only on the small protocol it uses, GithubClient implements all of
them, and tests get away with small fakes.

All methods raise NotFoundError when the target does not exist, and ApiError
for any other failure.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from .model import (
    FullRepo,
    LiveTeam,
    OrgMetadata,
    OrganizationRole,
    PermissionLevel,
    Privacy,
    RepoRequest,
    RepoSummary,
    TeamRole,
)


class OrgMetadataClient(Protocol):
    def get_org(self, org: str) -> OrgMetadata:
        ...

    def edit_org(self, org: str, metadata: OrgMetadata) -> OrgMetadata:
        ...


class InviteClient(Protocol):
    def list_org_invitations(self, org: str) -> List[str]:
        ...


class OrgMembersClient(Protocol):
    def bot_user(self) -> str:
        ...

    def list_org_members(self, org: str, role: OrganizationRole) -> List[str]:
        ...

    def update_org_membership(self, org: str, login: str, admin: bool) -> str:
        """Returns the membership state, "active" or "pending"."""
        ...

    def remove_org_membership(self, org: str, login: str) -> None:
        ...


class TeamClient(Protocol):
    def list_teams(self, org: str) -> List[LiveTeam]:
        ...

    def create_team(
        self,
        org: str,
        name: str,
        description: str,
        privacy: Optional[Privacy],
    ) -> LiveTeam:
        ...

    def delete_team(self, org: str, slug: str) -> None:
        ...


class EditTeamClient(Protocol):
    def edit_team(self, org: str, team: LiveTeam) -> LiveTeam:
        """
        Set name, description, privacy and parent of the team with the slug
        `team.slug` to the values in `team`.
        """
        ...


class TeamMembersClient(Protocol):
    def list_team_members(self, org: str, slug: str, role: TeamRole) -> List[str]:
        ...

    def list_team_invitations(self, org: str, slug: str) -> List[str]:
        ...

    def update_team_membership(
        self, org: str, slug: str, login: str, maintainer: bool
    ) -> str:
        ...

    def remove_team_membership(self, org: str, slug: str, login: str) -> None:
        ...


class TeamRepoClient(Protocol):
    def list_team_repos(self, org: str, slug: str) -> Dict[str, PermissionLevel]:
        ...

    def update_team_repo(
        self, org: str, slug: str, repo: str, level: PermissionLevel
    ) -> None:
        ...

    def remove_team_repo(self, org: str, slug: str, repo: str) -> None:
        ...


class RepoClient(Protocol):
    def list_repos(self, org: str) -> List[RepoSummary]:
        ...

    def get_repo(self, org: str, name: str) -> FullRepo:
        ...

    def create_repo(self, org: str, request: RepoRequest) -> FullRepo:
        ...

    def update_repo(self, org: str, name: str, request: RepoRequest) -> None:
        ...


class TeamSyncClient(
    TeamClient, EditTeamClient, TeamMembersClient, TeamRepoClient, Protocol
):
    pass


class SnapshotClient(
    OrgMetadataClient, OrgMembersClient, TeamClient, TeamMembersClient,
    TeamRepoClient, RepoClient, Protocol,
):
    pass


class OrgClient(
    OrgMetadataClient, InviteClient, OrgMembersClient, TeamSyncClient,
    RepoClient, Protocol,
):
    pass

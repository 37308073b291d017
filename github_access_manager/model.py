# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Data model for the desired state of an organization (OrgSpec and friends, as
read from the toml config), and for the state we observe on GitHub (LiveTeam,
FullRepo, ...).
"""

from __future__ import annotations

import json
import re

from enum import Enum
from functools import total_ordering
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
)


def normalize_login(login: str) -> str:
    """
    GitHub logins are case-insensitive, and people like to write them with a
    leading @ in config files.
    """
    return login.strip().lower().lstrip("@")


def normalize_logins(logins: Iterable[str]) -> FrozenSet[str]:
    return frozenset(normalize_login(login) for login in logins)


class OrganizationRole(Enum):
    ADMIN = "admin"
    MEMBER = "member"


class TeamRole(Enum):
    MAINTAINER = "maintainer"
    MEMBER = "member"


class Privacy(Enum):
    # Only visible to organization owners and members of the team.
    SECRET = "secret"
    # Visible to all organization members. Nested teams must be closed.
    CLOSED = "closed"


class RepositoryPermissionGlobal(Enum):
    """
    Settings allowed by the default repository access setting in the
    organization settings.
    """

    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


@total_ordering
class PermissionLevel(Enum):
    """
    Access level of a team on a repository. The order of the members is
    significant: every level includes all permissions of the levels before it.

    The names here have been chosen to match the UI. In the API, "read" and
    "write" are called "pull" and "push" respectively.
    """

    NONE = "none"
    READ = "read"
    TRIAGE = "triage"
    WRITE = "write"
    MAINTAIN = "maintain"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return list(PermissionLevel).index(self)

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank < other.rank

    @property
    def api_value(self) -> str:
        return _API_PERMISSIONS[self]

    @staticmethod
    def from_permissions_dict(permissions: Dict[str, bool]) -> PermissionLevel:
        # When you query the GitHub API for a team's repositories, every repo
        # carries a "permissions" object with a boolean per individual
        # permission. The UI levels map to pre-selected combinations of those
        # bools, and each is a superset of the previous one, so the highest
        # granted bool determines the level.
        if permissions.get("admin"):
            return PermissionLevel.ADMIN
        if permissions.get("maintain"):
            return PermissionLevel.MAINTAIN
        if permissions.get("push"):
            return PermissionLevel.WRITE
        if permissions.get("triage"):
            return PermissionLevel.TRIAGE
        if permissions.get("pull"):
            return PermissionLevel.READ
        return PermissionLevel.NONE


_API_PERMISSIONS: Dict[PermissionLevel, str] = {
    PermissionLevel.NONE: "none",
    PermissionLevel.READ: "pull",
    PermissionLevel.TRIAGE: "triage",
    PermissionLevel.WRITE: "push",
    PermissionLevel.MAINTAIN: "maintain",
    PermissionLevel.ADMIN: "admin",
}


_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


def toml_key(key: str) -> str:
    if _BARE_KEY.match(key):
        return key
    return json.dumps(key)


def toml_value(value: Any) -> str:
    """
    Format a value as toml. A json string is also a valid toml basic string,
    so we lean on json for the escaping.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return json.dumps(value.value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(toml_value(v) for v in value) + "]"
    if isinstance(value, Mapping):
        if len(value) == 0:
            return "{}"
        items = ", ".join(f"{toml_key(k)} = {toml_value(v)}" for k, v in value.items())
        return "{ " + items + " }"
    return str(value)


def _optional_enum(enum_type: Any, value: Optional[str]) -> Any:
    if value is None:
        return None
    return enum_type(value)


class OrgMetadata(NamedTuple):
    """
    Scalar settings of the organization. In the config every field is optional,
    and a field that is None means "don't care". The live organization has
    all of them filled in.
    """

    billing_email: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    # Called "name" in the API, but we use "name" for the org login.
    display_name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    default_repository_permission: Optional[RepositoryPermissionGlobal] = None
    has_organization_projects: Optional[bool] = None
    has_repository_projects: Optional[bool] = None
    members_can_create_repositories: Optional[bool] = None

    @staticmethod
    def from_toml_dict(data: Dict[str, Any]) -> OrgMetadata:
        return OrgMetadata(
            billing_email=data.get("billing_email"),
            company=data.get("company"),
            email=data.get("email"),
            display_name=data.get("display_name"),
            description=data.get("description"),
            location=data.get("location"),
            default_repository_permission=_optional_enum(
                RepositoryPermissionGlobal, data.get("default_repository_permission")
            ),
            has_organization_projects=data.get("has_organization_projects"),
            has_repository_projects=data.get("has_repository_projects"),
            members_can_create_repositories=data.get("members_can_create_repositories"),
        )

    def format_toml_lines(self) -> List[str]:
        return [
            f"{key} = {toml_value(value)}"
            for key, value in self._asdict().items()
            if value is not None
        ]


_NO_TEAMS: Mapping[str, "TeamSpec"] = MappingProxyType({})
_NO_REPO_PERMISSIONS: Mapping[str, PermissionLevel] = MappingProxyType({})


class TeamSpec(NamedTuple):
    description: Optional[str] = None
    privacy: Optional[Privacy] = None
    maintainers: Tuple[str, ...] = ()
    members: Tuple[str, ...] = ()
    children: Mapping[str, TeamSpec] = _NO_TEAMS
    repos: Mapping[str, PermissionLevel] = _NO_REPO_PERMISSIONS
    # Names this team had before. When one of these matches an existing team
    # on GitHub, we rename that team instead of creating a new one.
    previous_names: Tuple[str, ...] = ()

    @staticmethod
    def from_toml_dict(data: Dict[str, Any]) -> TeamSpec:
        return TeamSpec(
            description=data.get("description"),
            privacy=_optional_enum(Privacy, data.get("privacy")),
            maintainers=tuple(data.get("maintainers", [])),
            members=tuple(data.get("members", [])),
            children={
                name: TeamSpec.from_toml_dict(child)
                for name, child in data.get("children", {}).items()
            },
            repos={
                repo: PermissionLevel(level)
                for repo, level in data.get("repos", {}).items()
            },
            previous_names=tuple(data.get("previous_names", [])),
        )

    def format_toml(self, path: Sequence[str]) -> str:
        lines = ["[" + ".".join(toml_key(p) for p in path) + "]"]
        if self.description is not None:
            lines.append("description = " + toml_value(self.description))
        if self.privacy is not None:
            lines.append("privacy = " + toml_value(self.privacy))
        lines.append("maintainers = " + toml_value(sorted(self.maintainers)))
        lines.append("members = " + toml_value(sorted(self.members)))
        if len(self.previous_names) > 0:
            lines.append("previous_names = " + toml_value(self.previous_names))
        lines.append("repos = " + toml_value(dict(sorted(self.repos.items()))))

        sections = ["\n".join(lines)]
        for child_name, child in sorted(self.children.items()):
            sections.append(child.format_toml([*path, "children", child_name]))
        return "\n\n".join(sections)


class RepoCreateOptions(NamedTuple):
    """Settings that only apply when the repository gets created."""

    auto_init: Optional[bool] = None
    license_template: Optional[str] = None
    gitignore_template: Optional[str] = None

    @staticmethod
    def from_toml_dict(data: Dict[str, Any]) -> RepoCreateOptions:
        return RepoCreateOptions(
            auto_init=data.get("auto_init"),
            license_template=data.get("license_template"),
            gitignore_template=data.get("gitignore_template"),
        )


# Fields of RepoSpec that map one to one onto fields of the GitHub repo
# resource, in the order we print them.
REPO_SETTINGS = (
    "description",
    "homepage",
    "private",
    "has_issues",
    "has_projects",
    "has_wiki",
    "allow_merge_commit",
    "allow_squash_merge",
    "allow_rebase_merge",
    "squash_merge_commit_title",
    "squash_merge_commit_message",
    "archived",
    "default_branch",
)


class RepoSpec(NamedTuple):
    description: Optional[str] = None
    homepage: Optional[str] = None
    private: Optional[bool] = None
    has_issues: Optional[bool] = None
    has_projects: Optional[bool] = None
    has_wiki: Optional[bool] = None
    allow_merge_commit: Optional[bool] = None
    allow_squash_merge: Optional[bool] = None
    allow_rebase_merge: Optional[bool] = None
    squash_merge_commit_title: Optional[str] = None
    squash_merge_commit_message: Optional[str] = None
    archived: Optional[bool] = None
    default_branch: Optional[str] = None
    # GitHub repository names are case-insensitive, so are these.
    previous_names: Tuple[str, ...] = ()
    on_create: Optional[RepoCreateOptions] = None

    @staticmethod
    def from_toml_dict(data: Dict[str, Any]) -> RepoSpec:
        on_create: Optional[RepoCreateOptions] = None
        if "on_create" in data:
            on_create = RepoCreateOptions.from_toml_dict(data["on_create"])

        settings = {key: data.get(key) for key in REPO_SETTINGS}
        return RepoSpec(
            previous_names=tuple(data.get("previous_names", [])),
            on_create=on_create,
            **settings,
        )

    def format_toml(self, name: str) -> str:
        lines = [f"[repos.{toml_key(name)}]"]
        for key in REPO_SETTINGS:
            value = getattr(self, key)
            if value is not None:
                lines.append(f"{key} = {toml_value(value)}")
        if len(self.previous_names) > 0:
            lines.append("previous_names = " + toml_value(self.previous_names))
        if self.on_create is not None:
            options = {k: v for k, v in self.on_create._asdict().items() if v is not None}
            lines.append("on_create = " + toml_value(options))
        return "\n".join(lines)


class OrgSpec(NamedTuple):
    """
    The target state of an organization. This is loaded once per run, and
    never modified.
    """

    name: str
    metadata: OrgMetadata
    admins: Tuple[str, ...]
    members: Tuple[str, ...]
    teams: Mapping[str, TeamSpec]
    repos: Mapping[str, RepoSpec]

    @staticmethod
    def from_toml_dict(data: Dict[str, Any]) -> OrgSpec:
        org = data["organization"]
        return OrgSpec(
            name=org["name"],
            metadata=OrgMetadata.from_toml_dict(org),
            admins=tuple(org.get("admins", [])),
            members=tuple(org.get("members", [])),
            teams={
                name: TeamSpec.from_toml_dict(team)
                for name, team in data.get("teams", {}).items()
            },
            repos={
                name: RepoSpec.from_toml_dict(repo)
                for name, repo in data.get("repos", {}).items()
            },
        )

    def format_toml(self) -> str:
        org_lines = [
            "[organization]",
            "name = " + toml_value(self.name),
            *self.metadata.format_toml_lines(),
            "admins = " + toml_value(sorted(self.admins)),
            "members = " + toml_value(sorted(self.members)),
        ]
        sections = ["\n".join(org_lines)]
        for name, team in sorted(self.teams.items()):
            sections.append(team.format_toml(["teams", name]))
        for name, repo in sorted(self.repos.items()):
            sections.append(repo.format_toml(name))
        return "\n\n".join(sections) + "\n"


class MembershipSet(NamedTuple):
    """
    Logins with the plain role, and logins with the elevated role (admin for
    an organization, maintainer for a team). A login is in at most one of
    the two sets.
    """

    members: FrozenSet[str] = frozenset()
    elevated: FrozenSet[str] = frozenset()

    @staticmethod
    def new(members: Iterable[str], elevated: Iterable[str]) -> MembershipSet:
        return MembershipSet(members=frozenset(members), elevated=frozenset(elevated))

    def all(self) -> FrozenSet[str]:
        return self.members | self.elevated

    def normalized(self) -> MembershipSet:
        return MembershipSet(
            members=normalize_logins(self.members),
            elevated=normalize_logins(self.elevated),
        )


class LiveTeam(NamedTuple):
    # The id is assigned by GitHub and never changes. The slug is derived
    # from the name, so it changes when the team is renamed.
    team_id: int
    slug: str
    name: str
    description: str
    privacy: Privacy
    parent_team_id: Optional[int] = None


class RepoSummary(NamedTuple):
    """A repository as returned by the org repository listing."""

    repo_id: int
    name: str
    private: bool
    archived: bool


class FullRepo(NamedTuple):
    repo_id: int
    name: str
    description: str
    homepage: str
    private: bool
    has_issues: bool
    has_projects: bool
    has_wiki: bool
    allow_merge_commit: bool
    allow_squash_merge: bool
    allow_rebase_merge: bool
    squash_merge_commit_title: str
    squash_merge_commit_message: str
    archived: bool
    default_branch: str


class RepoRequest(NamedTuple):
    """
    Body of a create or update request for a repository. Only fields that are
    not None are sent, so an update request contains exactly the delta.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    homepage: Optional[str] = None
    private: Optional[bool] = None
    has_issues: Optional[bool] = None
    has_projects: Optional[bool] = None
    has_wiki: Optional[bool] = None
    allow_merge_commit: Optional[bool] = None
    allow_squash_merge: Optional[bool] = None
    allow_rebase_merge: Optional[bool] = None
    squash_merge_commit_title: Optional[str] = None
    squash_merge_commit_message: Optional[str] = None
    default_branch: Optional[str] = None
    archived: Optional[bool] = None
    # Only meaningful when creating.
    auto_init: Optional[bool] = None
    license_template: Optional[str] = None
    gitignore_template: Optional[str] = None

    def as_json(self) -> Dict[str, Any]:
        return {k: v for k, v in self._asdict().items() if v is not None}

    def is_defined(self) -> bool:
        return len(self.as_json()) > 0

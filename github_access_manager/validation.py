# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Pre-flight checks. These run before a phase issues its first mutating call,
and raise ValidationError when the config or the planned change looks wrong.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .clients import OrgMembersClient
from .config import Options
from .errors import ApiError, QuotaExceededError, ValidationError
from .model import OrgSpec, RepoSpec, TeamSpec, normalize_login, normalize_logins


def check_removal_quota(what: str, removing: int, total: int, max_delta: float) -> None:
    """
    Refuse to continue when a run would remove more than the `max_delta`
    fraction of the existing entries. A mistake in the config, such as an
    accidentally deleted list, should not wipe the organization.
    """
    if total == 0:
        return
    ratio = removing / total
    if ratio > max_delta:
        raise QuotaExceededError(what, removing, ratio, max_delta)


def iter_teams(teams: Mapping[str, TeamSpec]) -> Iterable[Tuple[str, TeamSpec]]:
    """Yield every team in the forest, parents before their children."""
    for name, team in teams.items():
        yield name, team
        yield from iter_teams(team.children)


def validate_admins(options: Options, client: OrgMembersClient, spec: OrgSpec) -> None:
    want_admins = normalize_logins(spec.admins)

    if len(want_admins) < options.min_admins:
        raise ValidationError(
            f"{spec.name} must specify at least {options.min_admins} admins, "
            f"only found {len(want_admins)}"
        )

    missing = [
        admin
        for admin in options.required_admins
        if normalize_login(admin) not in want_admins
    ]
    if len(missing) > 0:
        raise ValidationError(
            f"{spec.name} must specify {', '.join(options.required_admins)} "
            f"as admins, missing {', '.join(missing)}"
        )

    if options.require_self:
        try:
            me = client.bot_user()
        except ApiError as err:
            raise ValidationError(
                f"cannot determine user making requests for {spec.name}: {err}"
            ) from err
        if normalize_login(me) not in want_admins:
            raise ValidationError(f"authenticated user {me} is not an admin of {spec.name}")


def validate_team_members(spec: OrgSpec) -> None:
    """All team members and maintainers must also be members of the org."""
    org_members = normalize_logins(spec.admins) | normalize_logins(spec.members)
    team_members: Set[str] = set()
    for _, team in iter_teams(spec.teams):
        team_members |= normalize_logins(team.members)
        team_members |= normalize_logins(team.maintainers)

    outside = team_members - org_members
    if len(outside) > 0:
        raise ValidationError(
            "all team members/maintainers must also be org members: "
            + ", ".join(sorted(outside))
        )


def validate_team_names(teams: Mapping[str, TeamSpec]) -> None:
    """
    Team names, including previous names, must be unique across the whole
    forest, otherwise matching a config entry to a team on GitHub would be
    ambiguous.
    """
    used: Set[str] = set()
    duplicates: Set[str] = set()
    for name, team in iter_teams(teams):
        for n in (name, *team.previous_names):
            if n in used:
                duplicates.add(n)
            used.add(n)

    if len(duplicates) > 0:
        raise ValidationError(
            "team names must be unique (including previous names), "
            f"{len(duplicates)} duplicated names: {', '.join(sorted(duplicates))}"
        )


def validate_repos(repos: Mapping[str, RepoSpec]) -> None:
    """Repository names, including previous names, must be unique."""
    seen: Dict[str, str] = {}
    duplicates: List[str] = []

    for want_name, repo in sorted(repos.items()):
        to_check = (want_name, *repo.previous_names)
        for name in to_check:
            seen_name = seen.get(name.lower())
            if seen_name is not None:
                duplicates.append(f"{seen_name}/{name}")
        for name in to_check:
            seen[name.lower()] = name

    if len(duplicates) > 0:
        raise ValidationError(
            "found duplicate repo names (GitHub repo names are case-insensitive): "
            + ", ".join(duplicates)
        )


def validate_config(options: Options, client: OrgMembersClient, spec: OrgSpec) -> None:
    """
    Run the checks that only depend on the config, for every phase that is
    enabled. This happens before the first phase, so a config that fails
    them leaves the organization untouched.
    """
    if options.fix_org_members:
        validate_admins(options, client, spec)
    if options.fix_org_members or (options.fix_teams and options.fix_team_members):
        validate_team_members(spec)
    if options.fix_teams:
        validate_team_names(spec.teams)
    if options.fix_repos:
        validate_repos(spec.repos)

# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Reconciling the teams of an organization.

First we work out which team on GitHub corresponds to which team in the
config. Teams are matched by name, or by one of their previous names, so a
renamed team keeps its id (and with it its discussions and permissions)
instead of being deleted and recreated. Teams that are missing get created,
teams that are not in the config get deleted. The resulting name to team
table is then used to configure every team: its metadata, its members and
maintainers, and its repository permissions, recursing into child teams.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import (
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .clients import (
    EditTeamClient,
    TeamClient,
    TeamMembersClient,
    TeamRepoClient,
    TeamSyncClient,
)
from .config import Options
from .errors import (
    ApiError,
    NotFoundError,
    ReconcileError,
    ValidationError,
    raise_aggregate,
    with_context,
)
from .events import EventLog
from .membership import configure_members
from .model import (
    LiveTeam,
    MembershipSet,
    OrgSpec,
    PermissionLevel,
    Privacy,
    TeamRole,
    TeamSpec,
    normalize_login,
)
from .validation import check_removal_quota, validate_team_names


def canonical_teams(
    teams: Iterable[LiveTeam], events: EventLog
) -> Tuple[Dict[str, LiveTeam], List[LiveTeam]]:
    """
    Index teams by name. GitHub sometimes ends up with several teams of the
    same name; then the one with the lowest id is the canonical one, and the
    others are returned as stale duplicates.
    """
    names: Dict[str, LiveTeam] = {}
    stale: List[LiveTeam] = []
    for team in sorted(teams, key=lambda t: t.team_id):
        canonical = names.get(team.name)
        if canonical is None:
            names[team.name] = team
            continue
        events.debug(
            "stale-duplicate",
            f"Team {team.slug} has the same name as {canonical.slug}, "
            "which has a smaller id",
            id=team.team_id,
            name=team.name,
        )
        stale.append(team)
    return names, stale


def find_team(
    names: Mapping[str, LiveTeam], name: str, previous_names: Sequence[str] = ()
) -> Optional[LiveTeam]:
    """
    Return the team for the first of `name` and then `previous_names` that
    exists. A match on the current name always wins over the previous names.
    """
    for n in (name, *previous_names):
        team = names.get(n)
        if team is not None:
            return team
    return None


def configure_teams(
    client: TeamClient,
    org_name: str,
    teams: Mapping[str, TeamSpec],
    max_delta: float,
    ignore_secret_teams: bool,
    events: EventLog,
) -> Mapping[str, LiveTeam]:
    """
    Create and delete teams so that every team in the config has a team on
    GitHub. Returns the team on GitHub for every configured team name.

    Nothing is created or deleted when the config would delete more than the
    `max_delta` fraction of the existing teams.
    """
    validate_team_names(teams)

    team_list = client.list_teams(org_name)
    events.debug("list-teams", f"Found {len(team_list)} teams")
    teams_by_slug: Dict[str, LiveTeam] = {}
    for team in team_list:
        if ignore_secret_teams and team.privacy == Privacy.SECRET:
            continue
        teams_by_slug[team.slug] = team
    if ignore_secret_teams:
        events.debug("list-teams", f"Found {len(teams_by_slug)} non-secret teams")

    names, _ = canonical_teams(teams_by_slug.values(), events)

    matches: Dict[str, LiveTeam] = {}
    missing: Dict[str, TeamSpec] = {}
    used: Set[str] = set()

    def match(teams: Mapping[str, TeamSpec]) -> None:
        for name, team in sorted(teams.items()):
            match(team.children)
            live = find_team(names, name, team.previous_names)
            if live is None:
                events.debug("team-missing", f"Could not find team {name} on GitHub")
                missing[name] = team
                continue
            # live.name differs from name if we matched on a previous name.
            events.debug("team-found", f"Found team {name} on GitHub", id=live.team_id)
            matches[name] = live
            used.add(live.slug)

    match(teams)

    # Before changing anything, make sure we are not deleting too many.
    unused = set(teams_by_slug) - used
    check_removal_quota(f"teams of {org_name}", len(unused), len(teams_by_slug), max_delta)

    errors: List[Exception] = []
    for name, team in sorted(missing.items()):
        try:
            created = client.create_team(
                org_name,
                name,
                team.description or "",
                team.privacy,
            )
        except ApiError as err:
            events.warning("create-team-failed", f"Failed to create {name} in {org_name}: {err}")
            errors.append(with_context(f"failed to create team {name}", err))
            continue

        events.info("create-team", f"Created team {name} in {org_name}", id=created.team_id)
        matches[name] = created
        used.add(created.slug)

        # Another actor may have deleted a team after we listed them, and
        # GitHub may have handed its slug or id to the team we just created.
        reused = {
            slug
            for slug in unused
            if slug == created.slug or teams_by_slug[slug].team_id == created.team_id
        }
        if len(reused) > 0:
            events.warning(
                "reused-team",
                f"Will not delete {len(reused)} teams reused by GitHub: "
                + ", ".join(sorted(reused)),
            )
            unused -= reused

    # Later phases need every configured team to exist.
    raise_aggregate(errors)

    for slug in sorted(unused):
        doomed = teams_by_slug[slug]
        try:
            client.delete_team(org_name, slug)
        except NotFoundError:
            events.info("already-deleted", f"Team {slug}({doomed.name}) is already gone")
        except ApiError as err:
            events.warning(
                "delete-team-failed",
                f"Failed to delete team {slug}({doomed.name}) from {org_name}: {err}",
            )
            errors.append(with_context(f"failed to delete team {slug}({doomed.name})", err))
        else:
            events.info("delete-team", f"Deleted team {slug}({doomed.name}) from {org_name}")

    raise_aggregate(errors)

    return MappingProxyType(matches)


def configure_team(
    client: EditTeamClient,
    org_name: str,
    name: str,
    team: TeamSpec,
    live: LiveTeam,
    parent_id: Optional[int],
    events: EventLog,
) -> LiveTeam:
    """
    Patch the name, description, privacy and parent of the team when they
    differ from the config. Returns the team as it is after the patch.
    """
    want = live._replace(name=name, parent_team_id=parent_id)
    if team.description is not None:
        want = want._replace(description=team.description)

    if team.privacy is not None:
        want = want._replace(privacy=team.privacy)
    elif parent_id is not None or len(team.children) > 0:
        # Nested teams must be closed.
        want = want._replace(privacy=Privacy.CLOSED)

    if want == live:
        return live

    changed = [f for f in LiveTeam._fields if getattr(want, f) != getattr(live, f)]
    events.info(
        "edit-team",
        f"Updating {', '.join(changed)} of team {live.slug}({live.name})",
        id=live.team_id,
    )
    try:
        return client.edit_team(org_name, want)
    except ApiError as err:
        raise with_context(
            f"failed to edit {org_name} team {live.slug}({live.name})", err
        ) from err


def team_invitations(client: TeamMembersClient, org_name: str, slug: str) -> Set[str]:
    return {
        normalize_login(login)
        for login in client.list_team_invitations(org_name, slug)
        if login != ""
    }


def configure_team_members(
    client: TeamMembersClient,
    org_name: str,
    live: LiveTeam,
    team: TeamSpec,
    ignore_invitees: bool,
    events: EventLog,
) -> None:
    """
    Add and update people to the appropriate role on the team, and remove
    anyone else.
    """
    scope = f"{live.slug}({live.name})"
    try:
        have = MembershipSet.new(
            members=client.list_team_members(org_name, live.slug, TeamRole.MEMBER),
            elevated=client.list_team_members(org_name, live.slug, TeamRole.MAINTAINER),
        )
        invitees: Set[str] = set()
        if not ignore_invitees:
            invitees = team_invitations(client, org_name, live.slug)
    except ApiError as err:
        raise with_context(f"failed to list {scope} members", err) from err

    def grant(login: str, maintainer: bool) -> None:
        role = TeamRole.MAINTAINER if maintainer else TeamRole.MEMBER
        try:
            state = client.update_team_membership(org_name, live.slug, login, maintainer)
        except ApiError as err:
            # Keep the operation we attempted in the error, it gets reported
            # much later, together with the others.
            err = with_context(
                f"UpdateTeamMembership({scope}, {login}, {maintainer}) failed", err
            )
            events.warning("grant-failed", str(err), login=login)
            raise err

        if state == "pending":
            events.info("invite", f"Invited {login} to {scope} as {role.value}", login=login)
        else:
            events.info("grant", f"Set {login} as {role.value} of {scope}", login=login)

    def revoke(login: str) -> None:
        try:
            client.remove_team_membership(org_name, live.slug, login)
        except NotFoundError:
            # Counts as removed, configure_members handles this.
            raise
        except ApiError as err:
            err = with_context(f"RemoveTeamMembership({scope}, {login}) failed", err)
            events.warning("revoke-failed", str(err), login=login)
            raise err
        events.info("revoke", f"Removed {login} from team {scope}", login=login)

    want = MembershipSet.new(members=team.members, elevated=team.maintainers)
    configure_members(have, want, invitees, grant, revoke, events, scope=scope)


def team_repo_actions(
    have: Mapping[str, PermissionLevel], want: Mapping[str, PermissionLevel]
) -> Dict[str, PermissionLevel]:
    """
    The permission to set for every repository where it needs to change.
    Repositories that the team has access to, but should not, map to NONE.
    """
    actions: Dict[str, PermissionLevel] = {}
    for repo, level in want.items():
        if have.get(repo) != level:
            actions[repo] = level
    for repo in have:
        if repo not in want:
            actions[repo] = PermissionLevel.NONE
    return actions


def configure_team_repos(
    client: TeamRepoClient,
    org_name: str,
    live: LiveTeam,
    team: TeamSpec,
    events: EventLog,
) -> None:
    try:
        have = client.list_team_repos(org_name, live.slug)
    except ApiError as err:
        raise with_context(f"failed to list team {live.team_id}({live.name}) repos", err) from err

    errors: List[Exception] = []
    for repo, level in sorted(team_repo_actions(have, team.repos).items()):
        try:
            if level == PermissionLevel.NONE:
                client.remove_team_repo(org_name, live.slug, repo)
                events.info("remove-team-repo", f"Removed team {live.name} from {repo}")
            else:
                client.update_team_repo(org_name, live.slug, repo, level)
                events.info(
                    "update-team-repo",
                    f"Set permission of team {live.name} on {repo} to {level.value}",
                )
        except ApiError as err:
            if isinstance(err, NotFoundError) and level == PermissionLevel.NONE:
                events.info("already-removed", f"Team {live.name} has no access to {repo}")
                continue
            errors.append(
                with_context(
                    f"failed to update team {live.team_id}({live.name}) permissions "
                    f"on repo {repo} to {level.value}",
                    err,
                )
            )

    raise_aggregate(errors)


def configure_team_tree(
    options: Options,
    client: TeamSyncClient,
    matches: Mapping[str, LiveTeam],
    org_name: str,
    name: str,
    team: TeamSpec,
    parent_id: Optional[int],
    events: EventLog,
) -> None:
    """
    Configure the team, and then its children. A failure to patch the team
    itself skips its children, because they cannot be nested under it
    reliably. Member and repository failures do not stop the children, but
    are raised together with theirs at the end.
    """
    live = matches.get(name)
    if live is None:
        # configure_teams is buggy if this is the case.
        raise ValidationError(f"{name} not found in id list")

    live = configure_team(client, org_name, name, team, live, parent_id, events)

    errors: List[Exception] = []

    if options.fix_team_members:
        try:
            configure_team_members(
                client, org_name, live, team, options.ignore_invitees, events
            )
        except ReconcileError as err:
            errors.append(err)
    else:
        events.debug("skip", f"Skipping {name} member configuration")

    if options.fix_team_repos:
        try:
            configure_team_repos(client, org_name, live, team, events)
        except ReconcileError as err:
            errors.append(err)
    else:
        events.debug("skip", f"Skipping {name} repo permissions configuration")

    for child_name, child in sorted(team.children.items()):
        try:
            configure_team_tree(
                options, client, matches, org_name, child_name, child, live.team_id, events
            )
        except ReconcileError as err:
            errors.append(err)

    raise_aggregate(errors)


def configure_all_teams(
    options: Options,
    client: TeamSyncClient,
    spec: OrgSpec,
    events: EventLog,
) -> None:
    matches = configure_teams(
        client,
        spec.name,
        spec.teams,
        options.max_delta,
        options.ignore_secret_teams,
        events,
    )

    errors: List[Exception] = []
    for name, team in sorted(spec.teams.items()):
        try:
            configure_team_tree(options, client, matches, spec.name, name, team, None, events)
        except ReconcileError as err:
            errors.append(err)

    raise_aggregate(errors)

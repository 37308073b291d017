# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Reconciling memberships: who is part of the organization (or a team), and in
which role. Organization membership and team membership share the same
structure: there is a plain role, and an elevated one (admin for the org,
maintainer for a team), so both go through configure_members.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Set

from .clients import InviteClient, OrgMembersClient
from .config import Options
from .errors import ApiError, NotFoundError, ValidationError, raise_aggregate
from .events import EventLog
from .model import (
    MembershipSet,
    OrganizationRole,
    OrgSpec,
    normalize_login,
    normalize_logins,
)
from .validation import (
    check_removal_quota,
    validate_admins,
    validate_team_members,
    validate_team_names,
)

# grant(login, elevated) makes the login a member with the given role,
# revoke(login) removes the login entirely.
Grant = Callable[[str, bool], None]
Revoke = Callable[[str], None]


def configure_members(
    have: MembershipSet,
    want: MembershipSet,
    invitees: Iterable[str],
    grant: Grant,
    revoke: Revoke,
    events: EventLog,
    *,
    max_delta: Optional[float] = None,
    scope: str = "",
) -> None:
    """
    Grant and revoke memberships so that `have` becomes `want`.

    Logins with a pending invitation are not invited again, but they are
    revoked (which cancels the invitation) if they are not wanted. Individual
    failures do not stop the other changes; they are raised together as an
    AggregateError at the end. Revoking a login that is already gone counts
    as success.
    """
    have = have.normalized()
    want = want.normalized()
    pending = normalize_logins(invitees)

    both = want.members & want.elevated
    if len(both) > 0:
        raise ValidationError(f"users in both roles: {', '.join(sorted(both))}")

    to_revoke = (have.all() | pending) - want.all()
    to_grant_member = want.members - have.members
    to_grant_elevated = want.elevated - have.elevated

    if max_delta is not None:
        check_removal_quota(
            f"memberships of {scope}",
            len(have.all() - want.all()),
            len(have.all()),
            max_delta,
        )

    errors: List[Exception] = []

    for elevated, logins in ((False, to_grant_member), (True, to_grant_elevated)):
        for login in sorted(logins):
            if login in pending:
                # Adding them again would send another invitation.
                events.info(
                    "wait-for-invitation",
                    f"Waiting for {login} to accept invitation to {scope}",
                    login=login,
                )
                continue
            try:
                grant(login, elevated)
            except ApiError as err:
                errors.append(err)

    for login in sorted(to_revoke):
        try:
            revoke(login)
        except NotFoundError:
            events.info(
                "already-removed",
                f"{login} is already not a member of {scope}",
                login=login,
            )
        except ApiError as err:
            errors.append(err)

    raise_aggregate(errors)


def org_invitations(options: Options, client: InviteClient, org_name: str) -> Set[str]:
    """
    Logins with a pending invitation to the organization. Only needed when we
    are going to change memberships.
    """
    if not options.fix_org_members and not options.fix_team_members:
        return set()
    return {
        normalize_login(login)
        for login in client.list_org_invitations(org_name)
        if login != ""
    }


def configure_org_members(
    options: Options,
    client: OrgMembersClient,
    spec: OrgSpec,
    invitees: Iterable[str],
    events: EventLog,
) -> None:
    org_name = spec.name
    validate_admins(options, client, spec)

    have = MembershipSet.new(
        members=client.list_org_members(org_name, OrganizationRole.MEMBER),
        elevated=client.list_org_members(org_name, OrganizationRole.ADMIN),
    )
    want = MembershipSet.new(members=spec.members, elevated=spec.admins)

    validate_team_members(spec)
    validate_team_names(spec.teams)

    def grant(login: str, admin: bool) -> None:
        role = OrganizationRole.ADMIN if admin else OrganizationRole.MEMBER
        try:
            state = client.update_org_membership(org_name, login, admin)
        except ApiError as err:
            events.warning(
                "grant-failed",
                f"UpdateOrgMembership({org_name}, {login}, {admin}) failed: {err}",
                login=login,
            )
            if isinstance(err, NotFoundError):
                # This could be caused by someone removing their account, or
                # a typo in the config, but it should not fail the sync.
                return
            raise

        if state == "pending":
            events.info("invite", f"Invited {login} to {org_name} as {role.value}", login=login)
        else:
            events.info("grant", f"Set {login} as {role.value} of {org_name}", login=login)

    def revoke(login: str) -> None:
        try:
            client.remove_org_membership(org_name, login)
        except ApiError as err:
            if not isinstance(err, NotFoundError):
                events.warning(
                    "revoke-failed",
                    f"RemoveOrgMembership({org_name}, {login}) failed: {err}",
                    login=login,
                )
            raise
        events.info("revoke", f"Removed {login} from {org_name}", login=login)

    configure_members(
        have,
        want,
        invitees,
        grant,
        revoke,
        events,
        max_delta=options.max_delta,
        scope=org_name,
    )

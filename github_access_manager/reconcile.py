# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Run the reconciliation phases in order. Later phases depend on earlier ones:
team members must be org members, and team repository permissions need the
repositories to exist, so a failed phase stops the run. Checks that only
depend on the config run before any phase.
"""

from __future__ import annotations

from .clients import OrgClient
from .config import Options
from .errors import PhaseError, ReconcileError
from .events import EventLog
from .membership import configure_org_members, org_invitations
from .metadata import configure_org_meta
from .model import OrgSpec
from .repos import configure_repos
from .teams import configure_all_teams
from .validation import validate_config


def configure(
    options: Options,
    client: OrgClient,
    spec: OrgSpec,
    events: EventLog,
) -> None:
    org_name = spec.name

    try:
        validate_config(options, client, spec)
    except ReconcileError as err:
        raise PhaseError(f"{org_name} config", err) from err

    if not options.fix_org:
        events.info("skip", "Skipping org metadata configuration")
    else:
        try:
            configure_org_meta(client, org_name, spec.metadata, events)
        except ReconcileError as err:
            raise PhaseError(f"{org_name} metadata", err) from err

    try:
        invitees = org_invitations(options, client, org_name)
    except ReconcileError as err:
        raise PhaseError(f"{org_name} invitations", err) from err

    if not options.fix_org_members:
        events.info("skip", "Skipping org member configuration")
    else:
        try:
            configure_org_members(options, client, spec, invitees, events)
        except ReconcileError as err:
            raise PhaseError(f"{org_name} members", err) from err

    if not options.fix_repos:
        events.info("skip", "Skipping org repositories configuration")
    else:
        try:
            configure_repos(options, client, org_name, spec.repos, events)
        except ReconcileError as err:
            raise PhaseError(f"{org_name} repos", err) from err

    if not options.fix_teams:
        events.info("skip", "Skipping team and team member configuration")
        return

    try:
        configure_all_teams(options, client, spec, events)
    except ReconcileError as err:
        raise PhaseError(f"{org_name} teams", err) from err

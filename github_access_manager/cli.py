# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Command line entry point. See main.py at the root of the repository for the
full usage.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from typing import List, Optional, Sequence

from .config import (
    DEFAULT_GITHUB_ENDPOINT,
    DEFAULT_MAX_DELTA,
    DEFAULT_MIN_ADMINS,
    Options,
    load_org_spec,
)
from .errors import AggregateError, PhaseError, ReconcileError
from .events import EventLog
from .github import GithubClient
from .reconcile import configure
from .snapshot import dump

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warning", "error")


def new_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="github-access-manager",
        description="Reconcile a GitHub organization against a toml config.",
    )
    parser.add_argument("--config-path", help="Path to the org config to apply.")
    parser.add_argument(
        "--dump",
        metavar="ORG",
        help="Print the current state of ORG as config, instead of applying one.",
    )
    parser.add_argument(
        "--confirm",
        action="store_true",
        help="Mutate GitHub. Without it, only log what would change.",
    )
    parser.add_argument(
        "--min-admins",
        type=int,
        default=DEFAULT_MIN_ADMINS,
        help="Ensure the org has at least this many admins.",
    )
    parser.add_argument(
        "--required-admins",
        action="append",
        default=[],
        metavar="LOGIN",
        help="Ensure LOGIN is an admin. Can be repeated.",
    )
    parser.add_argument(
        "--require-self",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Ensure the authenticated user is an admin.",
    )
    parser.add_argument(
        "--maximum-removal-delta",
        type=float,
        default=DEFAULT_MAX_DELTA,
        help="Fail if the config removes more than this fraction of members or teams.",
    )
    parser.add_argument("--fix-org", action="store_true", help="Change org metadata.")
    parser.add_argument(
        "--fix-org-members", action="store_true", help="Add/remove org members."
    )
    parser.add_argument(
        "--fix-teams", action="store_true", help="Create/delete/update teams."
    )
    parser.add_argument(
        "--fix-team-members",
        action="store_true",
        help="Add/remove team members (requires --fix-teams).",
    )
    parser.add_argument(
        "--fix-team-repos",
        action="store_true",
        help="Add/remove team repository permissions (requires --fix-teams).",
    )
    parser.add_argument("--fix-repos", action="store_true", help="Create/update repositories.")
    parser.add_argument(
        "--ignore-secret-teams",
        action="store_true",
        help="Do not dump or update secret teams.",
    )
    parser.add_argument(
        "--ignore-invitees",
        action="store_true",
        help="Do not wait for pending team invitations to be accepted.",
    )
    parser.add_argument(
        "--allow-repo-archival",
        action="store_true",
        help="Allow archiving repositories.",
    )
    parser.add_argument(
        "--allow-repo-publish",
        action="store_true",
        help="Allow making private repositories public.",
    )
    parser.add_argument(
        "--github-app-id",
        help="Run as the GitHub App with this id, instead of as a user.",
    )
    parser.add_argument(
        "--github-endpoint",
        default=DEFAULT_GITHUB_ENDPOINT,
        help="Base url of the GitHub API.",
    )
    parser.add_argument("--log-level", choices=LOG_LEVELS, default="info")
    parser.add_argument(
        "--merge-teams",
        action="store_true",
        help="Merge teams from teams.toml files in subdirectories of the config.",
    )
    parser.add_argument(
        "--ignore-teams",
        action="store_true",
        help="Ignore all teams in the config.",
    )
    return parser


def parse_options(argv: Sequence[str]) -> Options:
    args = new_parser().parse_args(argv)
    return Options(
        config_path=args.config_path,
        dump=args.dump,
        confirm=args.confirm,
        max_delta=args.maximum_removal_delta,
        min_admins=args.min_admins,
        require_self=args.require_self,
        required_admins=tuple(args.required_admins),
        fix_org=args.fix_org,
        fix_org_members=args.fix_org_members,
        fix_teams=args.fix_teams,
        fix_team_members=args.fix_team_members,
        fix_team_repos=args.fix_team_repos,
        fix_repos=args.fix_repos,
        ignore_invitees=args.ignore_invitees,
        ignore_secret_teams=args.ignore_secret_teams,
        allow_repo_archival=args.allow_repo_archival,
        allow_repo_publish=args.allow_repo_publish,
        merge_teams=args.merge_teams,
        ignore_teams=args.ignore_teams,
        app_id=args.github_app_id,
        github_endpoint=args.github_endpoint,
        log_level=args.log_level,
    )


def report_failure(err: ReconcileError) -> None:
    errors: List[Exception] = [err]
    if isinstance(err, PhaseError):
        errors = err.errors
        state = "aborted" if err.aborted else "failed"
        print(f"Configuring {err.phase} {state}:", file=sys.stderr)
    elif isinstance(err, AggregateError):
        errors = err.errors

    for error in errors:
        print(f"  {error}", file=sys.stderr)


def run(options: Options, github_token: str) -> None:
    client = GithubClient.new(
        github_token,
        options.github_endpoint,
        dry_run=not options.confirm,
    )
    events = EventLog()

    if options.dump is not None:
        spec = dump(
            client,
            options.dump,
            options.ignore_secret_teams,
            options.app_id,
            events,
        )
        print(spec.format_toml(), end="")
        return

    configure(options, client, load_org_spec(options), events)
    if not options.confirm:
        logger.info("Dry run complete, rerun with --confirm to apply the changes")


def main(argv: Optional[Sequence[str]] = None) -> None:
    options = parse_options(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=options.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token is None:
        print("Expected GITHUB_TOKEN environment variable to be set.")
        print("See also --help.")
        sys.exit(1)

    try:
        options.validate()
        run(options, github_token)
    except ReconcileError as err:
        report_failure(err)
        sys.exit(1)

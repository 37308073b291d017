#!/usr/bin/env python3

# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Github Access Manager

Reconcile a GitHub organization against a declarative specification of its
target state: organization settings, admins and members, teams (with their
members and repository permissions), and repositories. Without --confirm,
nothing is changed, the tool only logs what it would do.

USAGE

    ./main.py --config-path org.toml [--fix-org] [--fix-org-members]
        [--fix-repos] [--fix-teams [--fix-team-members] [--fix-team-repos]]
        [--confirm]

    ./main.py --dump acme-co > org.toml

Every part of the organization is only touched when its --fix-* flag is set.
Run with -h for the full list of options.

ENVIRONMENT

Requires GITHUB_TOKEN to be set in the environment. This must contain a personal
access token that has the following permissions:

 * "admin:org", which when checked implies both "read:org" and "write:org".
   Some organization-wide settings, such as the default repository permission,
   can only be read and changed with the full "admin:org" permission.

 * "repo", which implies various subpermissions. This is needed to list and
   change private repositories within the organization.

You can generate a new token at https://github.com/settings/tokens.

SAFETY

 * The config must list at least --min-admins admins (5 by default), including
   every --required-admins login, and the authenticated user (unless
   --no-require-self is passed).

 * A run never removes more than --maximum-removal-delta (25% by default) of
   the organization members, or of the teams. When the config would, the
   phase is aborted before anything is changed.

 * Repositories are never deleted. Archiving a repository and making a
   private repository public need --allow-repo-archival and
   --allow-repo-publish respectively. Archived repositories cannot be
   unarchived through the API.

CONFIGURATION

The input file is a toml file that describes the target state of the GitHub
organization. The format is as follows.

    [organization]
    # GitHub organization to target.
    name = "acme-co"

    # Settings that are left out are not changed.
    billing_email = "billing@acme.example"
    description = "We make everything"

    # Permission that organization members have on organization repositories.
    # Must be one of "none", "read", "write", "admin".
    default_repository_permission = "read"

    # Logins are case-insensitive, and may be written with a leading @.
    admins = ["octocat", "hubot"]
    members = ["mona"]

    [teams.developers]
    description = "All developers"
    # One of "secret" or "closed". Teams with a parent or children must be
    # "closed", and when left out, they are made closed.
    privacy = "closed"
    # Team members must also be members (or admins) of the organization.
    maintainers = ["octocat"]
    members = ["mona"]
    # When a team with one of these names exists, it is renamed, rather than
    # deleted and created again.
    previous_names = ["devs"]
    # The permission level can be "read", "triage", "write", "maintain", or
    # "admin". Permissions on repositories that are not listed are removed.
    repos = { widget = "write" }

    # Child teams are nested under their parent.
    [teams.developers.children.frontend]
    members = ["mona"]

    # Repositories that are not listed here are left alone.
    [repos.widget]
    description = "Makes widgets"
    private = true
    has_wiki = false
    default_branch = "main"
    previous_names = ["gadget"]
    # Only used when the repository gets created.
    on_create = { auto_init = true, license_template = "apache-2.0" }

With --merge-teams, the [teams] of every teams.toml file in a directory next
to the config file are merged into it, so teams can own their own file.
"""

import sys

from github_access_manager.cli import main


if __name__ == "__main__":
    if "--help" in sys.argv:
        print(__doc__)
        sys.exit(0)

    main()

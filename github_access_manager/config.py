# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Run options, and loading the org config from toml files.
"""

from __future__ import annotations

import os
import tomli

from typing import Any, Dict, NamedTuple, Optional, Tuple

from .errors import ConfigError
from .model import OrgSpec

DEFAULT_MIN_ADMINS = 5
DEFAULT_MAX_DELTA = 0.25
DEFAULT_GITHUB_ENDPOINT = "https://api.github.com"

# File name of the per-directory team configs that --merge-teams picks up.
TEAMS_FILE_NAME = "teams.toml"


class Options(NamedTuple):
    config_path: Optional[str] = None
    # Org to snapshot, instead of reconciling.
    dump: Optional[str] = None
    # Without confirm, nothing on GitHub is changed, we only log what we would
    # have done.
    confirm: bool = False

    # Protections.
    max_delta: float = DEFAULT_MAX_DELTA
    min_admins: int = DEFAULT_MIN_ADMINS
    require_self: bool = True
    required_admins: Tuple[str, ...] = ()

    # Which phases to run.
    fix_org: bool = False
    fix_org_members: bool = False
    fix_teams: bool = False
    fix_team_members: bool = False
    fix_team_repos: bool = False
    fix_repos: bool = False

    ignore_invitees: bool = False
    ignore_secret_teams: bool = False
    allow_repo_archival: bool = False
    allow_repo_publish: bool = False

    merge_teams: bool = False
    ignore_teams: bool = False

    # When running as a GitHub App, the token does not belong to a user that
    # could be listed as an org admin.
    app_id: Optional[str] = None
    github_endpoint: str = DEFAULT_GITHUB_ENDPOINT
    log_level: str = "info"

    def validate(self) -> None:
        if self.min_admins < 2:
            raise ConfigError(f"--min-admins={self.min_admins} must be at least 2")

        if self.max_delta > 1 or self.max_delta < 0:
            raise ConfigError(
                f"--maximum-removal-delta={self.max_delta} must be a non-negative "
                "number less than 1.0"
            )

        if self.confirm and self.dump is not None and self.app_id is None:
            raise ConfigError(f"--confirm cannot be used with --dump={self.dump}")

        if self.config_path is None and self.dump is None:
            raise ConfigError("--config-path or --dump required")

        if self.config_path is not None and self.dump is not None:
            raise ConfigError(
                f"--config-path={self.config_path} and --dump={self.dump} "
                "cannot both be set"
            )

        if self.fix_team_members and not self.fix_teams:
            raise ConfigError("--fix-team-members requires --fix-teams")

        if self.fix_team_repos and not self.fix_teams:
            raise ConfigError("--fix-team-repos requires --fix-teams")

        if self.merge_teams and self.ignore_teams:
            raise ConfigError("--merge-teams XOR --ignore-teams, not both")


def _load_toml(fname: str) -> Dict[str, Any]:
    try:
        with open(fname, "rb") as f:
            return tomli.load(f)
    except OSError as err:
        raise ConfigError(f"cannot read {fname}: {err}") from err
    except tomli.TOMLDecodeError as err:
        raise ConfigError(f"invalid toml in {fname}: {err}") from err


def merge_team_files(data: Dict[str, Any], config_path: str) -> Dict[str, Any]:
    """
    Merge the [teams] tables of `teams.toml` files in the immediate
    subdirectories of the directory that contains the main config. This lets
    every team maintain its own file. Deeper directories are not searched.
    """
    teams = dict(data.get("teams", {}))
    prefix = os.path.dirname(os.path.abspath(config_path))
    for entry in sorted(os.listdir(prefix)):
        team_file = os.path.join(prefix, entry, TEAMS_FILE_NAME)
        if not os.path.isfile(team_file):
            continue
        teams.update(_load_toml(team_file).get("teams", {}))
    return {**data, "teams": teams}


def load_org_spec(options: Options) -> OrgSpec:
    assert options.config_path is not None
    data = _load_toml(options.config_path)

    if options.ignore_teams:
        data = {**data, "teams": {}}
    elif options.merge_teams:
        data = merge_team_files(data, options.config_path)

    try:
        return OrgSpec.from_toml_dict(data)
    except KeyError as err:
        raise ConfigError(f"{options.config_path}: missing key {err}") from err
    except ValueError as err:
        raise ConfigError(f"{options.config_path}: {err}") from err

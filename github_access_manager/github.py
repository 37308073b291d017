# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
A client for the parts of the GitHub REST API that we need. It implements all
of the capability protocols in `clients`.

Rate limiting and retries are left to GitHub's secondary rate limits and to
whoever runs us; we only make one request at a time.
"""

from __future__ import annotations

import json
import logging
import re
import requests
import sys

from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from .config import DEFAULT_GITHUB_ENDPOINT
from .errors import ApiError, NotFoundError
from .model import (
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

logger = logging.getLogger(__name__)

# 10 seconds was not enough for the "/org/{org}/repos" endpoint.
TIMEOUT_SECONDS = 15


def parse_link_header(contents: str) -> Dict[str, str]:
    """
    Parse a Link header like

        Link: <https://api.example/?page=2>; rel="next", <https://api.example/?page=3>; rel="last"

    into a dict like

    {
        "next": "https://api.example/?page=2",
        "last": "https://api.example/?page=3",
    }
    """
    # This is probably not fully general for *any* Link header, but we only need
    # to parse the ones that GitHub returns to us.
    result: Dict[str, str] = {}
    for link in contents.split(","):
        if link.strip() == "":
            continue

        url, rel = link.split(";", maxsplit=1)
        url, rel = url.strip(), rel.strip()

        # Strip off the "decorations", the <> around the url, and quotes around
        # the rel="...". If they are not as expected, crash the program. With
        # arbitrary inputs that would be a bad idea, but we are only trying to
        # parse headers from GitHub's API here.
        assert url[0] == "<" and url[-1] == ">"
        assert rel[:4] == "rel="
        url = url[1:-1]
        rel = rel[4:]
        assert rel[0] == '"' and rel[-1] == '"'
        rel = rel[1:-1]
        result[rel] = url

    return result


def print_status_stderr(status: str) -> None:
    """
    On stderr, clear the current line with an ANSI escape code, jump back to
    the start of the line, and print the status, without a newline. This means
    that subsequent updates will overwrite each other (if nothing gets printed
    to stdout in the meantime).
    """
    clear_line = "\x1b[2K\r"
    print(f"{clear_line}{status}", end="", file=sys.stderr)


def slugify(name: str) -> str:
    """Approximately how GitHub derives a team slug from its name."""
    return re.sub(r"[^a-z0-9_]+", "-", name.lower()).strip("-")


def team_from_json(team: Dict[str, Any]) -> LiveTeam:
    parent = team.get("parent")
    return LiveTeam(
        team_id=team["id"],
        slug=team["slug"],
        name=team["name"],
        description=team.get("description") or "",
        privacy=Privacy(team["privacy"]),
        parent_team_id=parent["id"] if parent is not None else None,
    )


def full_repo_from_json(repo: Dict[str, Any]) -> FullRepo:
    return FullRepo(
        repo_id=repo["id"],
        name=repo["name"],
        description=repo.get("description") or "",
        homepage=repo.get("homepage") or "",
        private=repo["private"],
        has_issues=repo["has_issues"],
        has_projects=repo["has_projects"],
        has_wiki=repo["has_wiki"],
        allow_merge_commit=repo.get("allow_merge_commit", True),
        allow_squash_merge=repo.get("allow_squash_merge", True),
        allow_rebase_merge=repo.get("allow_rebase_merge", True),
        squash_merge_commit_title=repo.get("squash_merge_commit_title") or "",
        squash_merge_commit_message=repo.get("squash_merge_commit_message") or "",
        archived=repo["archived"],
        default_branch=repo.get("default_branch") or "",
    )


def org_metadata_from_json(org: Dict[str, Any]) -> OrgMetadata:
    return OrgMetadata(
        billing_email=org.get("billing_email") or "",
        company=org.get("company") or "",
        email=org.get("email") or "",
        display_name=org.get("name") or "",
        description=org.get("description") or "",
        location=org.get("location") or "",
        default_repository_permission=RepositoryPermissionGlobal(
            org["default_repository_permission"]
        ),
        has_organization_projects=org["has_organization_projects"],
        has_repository_projects=org["has_repository_projects"],
        members_can_create_repositories=org["members_can_create_repositories"],
    )


def org_metadata_to_json(metadata: OrgMetadata) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    for key, value in metadata._asdict().items():
        if value is None:
            continue
        if key == "display_name":
            key = "name"
        if isinstance(value, RepositoryPermissionGlobal):
            value = value.value
        body[key] = value
    return body


class GithubClient(NamedTuple):
    session: requests.Session
    endpoint: str
    # In a dry run we only read from GitHub. Mutations are logged instead.
    dry_run: bool

    @staticmethod
    def new(
        github_token: str,
        endpoint: str = DEFAULT_GITHUB_ENDPOINT,
        dry_run: bool = True,
    ) -> GithubClient:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"token {github_token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "Github Access Manager",
            }
        )
        return GithubClient(session, endpoint.rstrip("/"), dry_run)

    def _url(self, url: str) -> str:
        # Pagination links are absolute already.
        if url.startswith("/"):
            return self.endpoint + url
        return url

    def _request(
        self, method: str, url: str, body: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        url = self._url(url)
        try:
            response = self.session.request(
                method, url, json=body, timeout=TIMEOUT_SECONDS
            )
        except requests.RequestException as err:
            raise ApiError(f"{method} {url!r} failed: {err}", url=url) from err

        if 200 <= response.status_code < 300:
            return response

        error_type = NotFoundError if response.status_code == 404 else ApiError
        raise error_type(
            f"Got {response.status_code} from {method} {url!r}: {response.text!r}",
            response.status_code,
            url,
            response.text,
        )

    def _http_get_json(self, url: str) -> Any:
        return self._request("GET", url).json()

    def _http_get_json_paginated(self, url: str) -> Iterable[Any]:
        next_url = url

        while True:
            response = self._request("GET", next_url)
            items: List[Any] = response.json()
            # Yield items separately, so the caller does not have to flatten
            # the iterable of lists.
            yield from items

            # GitHub provides pagination links in the response headers. If
            # there is more to fetch, there will be a rel="next" link to follow.
            links = parse_link_header(response.headers.get("link", ""))
            if "next" not in links:
                break
            next_url = links["next"]

    def _http_get_team_items(self, url: str) -> List[Any]:
        try:
            return list(self._http_get_json_paginated(url))
        except NotFoundError:
            # In a dry run, teams that we only pretended to create do not
            # exist. They have nothing in them yet.
            if self.dry_run:
                return []
            raise

    def _http_mutate(
        self, method: str, url: str, body: Optional[Dict[str, Any]] = None
    ) -> Optional[Any]:
        if self.dry_run:
            logger.info(
                "Dry run, not sending %s %s %s",
                method,
                url,
                json.dumps(body) if body is not None else "",
            )
            return None

        response = self._request(method, url, body)
        if response.status_code == 204 or len(response.content) == 0:
            return None
        return response.json()

    def bot_user(self) -> str:
        return self._http_get_json("/user")["login"]

    def get_org(self, org: str) -> OrgMetadata:
        return org_metadata_from_json(self._http_get_json(f"/orgs/{org}"))

    def edit_org(self, org: str, metadata: OrgMetadata) -> OrgMetadata:
        result = self._http_mutate("PATCH", f"/orgs/{org}", org_metadata_to_json(metadata))
        if result is None:
            return metadata
        return org_metadata_from_json(result)

    def list_org_members(self, org: str, role: OrganizationRole) -> List[str]:
        members = self._http_get_json_paginated(
            f"/orgs/{org}/members?role={role.value}&per_page=100"
        )
        return [member["login"] for member in members]

    def list_org_invitations(self, org: str) -> List[str]:
        invitations = self._http_get_json_paginated(f"/orgs/{org}/invitations?per_page=100")
        # Invitations by email address have no login.
        return [i.get("login") or "" for i in invitations]

    def update_org_membership(self, org: str, login: str, admin: bool) -> str:
        role = OrganizationRole.ADMIN if admin else OrganizationRole.MEMBER
        result = self._http_mutate(
            "PUT", f"/orgs/{org}/memberships/{login}", {"role": role.value}
        )
        if result is None:
            return "active"
        return result["state"]

    def remove_org_membership(self, org: str, login: str) -> None:
        self._http_mutate("DELETE", f"/orgs/{org}/memberships/{login}")

    def list_teams(self, org: str) -> List[LiveTeam]:
        teams = self._http_get_json_paginated(f"/orgs/{org}/teams?per_page=100")
        return [team_from_json(team) for team in teams]

    def create_team(
        self,
        org: str,
        name: str,
        description: str,
        privacy: Optional[Privacy],
    ) -> LiveTeam:
        body: Dict[str, Any] = {"name": name, "description": description}
        if privacy is not None:
            body["privacy"] = privacy.value
        result = self._http_mutate("POST", f"/orgs/{org}/teams", body)
        if result is None:
            return LiveTeam(
                team_id=0,
                slug=slugify(name),
                name=name,
                description=description,
                privacy=privacy or Privacy.SECRET,
            )
        return team_from_json(result)

    def edit_team(self, org: str, team: LiveTeam) -> LiveTeam:
        body = {
            "name": team.name,
            "description": team.description,
            "privacy": team.privacy.value,
            # Null removes the parent.
            "parent_team_id": team.parent_team_id,
        }
        result = self._http_mutate("PATCH", f"/orgs/{org}/teams/{team.slug}", body)
        if result is None:
            return team
        return team_from_json(result)

    def delete_team(self, org: str, slug: str) -> None:
        self._http_mutate("DELETE", f"/orgs/{org}/teams/{slug}")

    def list_team_members(self, org: str, slug: str, role: TeamRole) -> List[str]:
        members = self._http_get_team_items(
            f"/orgs/{org}/teams/{slug}/members?role={role.value}&per_page=100"
        )
        return [member["login"] for member in members]

    def list_team_invitations(self, org: str, slug: str) -> List[str]:
        invitations = self._http_get_team_items(
            f"/orgs/{org}/teams/{slug}/invitations?per_page=100"
        )
        return [i.get("login") or "" for i in invitations]

    def update_team_membership(
        self, org: str, slug: str, login: str, maintainer: bool
    ) -> str:
        role = TeamRole.MAINTAINER if maintainer else TeamRole.MEMBER
        result = self._http_mutate(
            "PUT",
            f"/orgs/{org}/teams/{slug}/memberships/{login}",
            {"role": role.value},
        )
        if result is None:
            return "active"
        return result["state"]

    def remove_team_membership(self, org: str, slug: str, login: str) -> None:
        self._http_mutate("DELETE", f"/orgs/{org}/teams/{slug}/memberships/{login}")

    def list_team_repos(self, org: str, slug: str) -> Dict[str, PermissionLevel]:
        repos = self._http_get_team_items(f"/orgs/{org}/teams/{slug}/repos?per_page=100")
        return {
            repo["name"]: PermissionLevel.from_permissions_dict(repo["permissions"])
            for repo in repos
        }

    def update_team_repo(
        self, org: str, slug: str, repo: str, level: PermissionLevel
    ) -> None:
        self._http_mutate(
            "PUT",
            f"/orgs/{org}/teams/{slug}/repos/{org}/{repo}",
            {"permission": level.api_value},
        )

    def remove_team_repo(self, org: str, slug: str, repo: str) -> None:
        self._http_mutate("DELETE", f"/orgs/{org}/teams/{slug}/repos/{org}/{repo}")

    def list_repos(self, org: str) -> List[RepoSummary]:
        # Listing repositories is a slow endpoint, and paginated as well, print
        # some progress. Technically from the pagination headers we could
        # extract more precise progress, but I am not going to bother.
        print_status_stderr("[1 / ??] Listing organization repositories")
        repos: List[RepoSummary] = []
        for repo in self._http_get_json_paginated(f"/orgs/{org}/repos?per_page=100"):
            repos.append(
                RepoSummary(
                    repo_id=repo["id"],
                    name=repo["name"],
                    private=repo["private"],
                    archived=repo["archived"],
                )
            )
            print_status_stderr(f"[{len(repos)} / ??] Listing organization repositories")

        # After the final status update, clear the line again, so the final
        # output is not mixed with status updates.
        print_status_stderr("")
        return repos

    def get_repo(self, org: str, name: str) -> FullRepo:
        return full_repo_from_json(self._http_get_json(f"/repos/{org}/{name}"))

    def create_repo(self, org: str, request: RepoRequest) -> FullRepo:
        result = self._http_mutate("POST", f"/orgs/{org}/repos", request.as_json())
        if result is not None:
            return full_repo_from_json(result)

        # Pretend GitHub created the repo with its defaults for everything we
        # did not ask for.
        assert request.name is not None
        return FullRepo(
            repo_id=0,
            name=request.name,
            description=request.description or "",
            homepage=request.homepage or "",
            private=bool(request.private),
            has_issues=request.has_issues is not False,
            has_projects=request.has_projects is not False,
            has_wiki=request.has_wiki is not False,
            allow_merge_commit=request.allow_merge_commit is not False,
            allow_squash_merge=request.allow_squash_merge is not False,
            allow_rebase_merge=request.allow_rebase_merge is not False,
            squash_merge_commit_title=request.squash_merge_commit_title or "",
            squash_merge_commit_message=request.squash_merge_commit_message or "",
            archived=False,
            default_branch="main",
        )

    def update_repo(self, org: str, name: str, request: RepoRequest) -> None:
        self._http_mutate("PATCH", f"/repos/{org}/{name}", request.as_json())

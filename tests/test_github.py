# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

import json

from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

from github_access_manager.errors import ApiError, NotFoundError
from github_access_manager.github import (
    GithubClient,
    org_metadata_to_json,
    parse_link_header,
    slugify,
)
from github_access_manager.model import (
    OrganizationRole,
    OrgMetadata,
    PermissionLevel,
    Privacy,
    RepoRequest,
    RepositoryPermissionGlobal,
    TeamRole,
)

ENDPOINT = "https://api.example"


def new_response(status: int, body: Any = None, link: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = b"" if body is None else json.dumps(body).encode("utf-8")
    if link != "":
        response.headers["link"] = link
    return response


class FakeSession:
    """Replays canned responses by method and url."""

    def __init__(self, responses: Dict[Tuple[str, str], requests.Response]) -> None:
        self.responses = responses
        self.requests: List[Tuple[str, str, Optional[Any]]] = []

    def request(self, method: str, url: str, json: Any = None, timeout: Any = None):
        self.requests.append((method, url, json))
        response = self.responses.get((method, url))
        if response is None:
            return new_response(404, {"message": "Not Found"})
        return response


def new_client(responses, dry_run: bool = False) -> Tuple[GithubClient, FakeSession]:
    session = FakeSession(responses)
    return GithubClient(session, ENDPOINT, dry_run), session


def test_parse_link_header():
    header = (
        '<https://api.example/?page=2>; rel="next", '
        '<https://api.example/?page=3>; rel="last"'
    )
    assert parse_link_header(header) == {
        "next": "https://api.example/?page=2",
        "last": "https://api.example/?page=3",
    }
    assert parse_link_header("") == {}


def test_slugify():
    assert slugify("Front End") == "front-end"
    assert slugify("--QA!!") == "qa"


def test_list_org_members_follows_pagination():
    first = f"{ENDPOINT}/orgs/acme/members?role=admin&per_page=100"
    second = f"{ENDPOINT}/orgs/acme/members?role=admin&per_page=100&page=2"
    client, session = new_client(
        {
            ("GET", first): new_response(
                200, [{"login": "octocat"}], link=f'<{second}>; rel="next"'
            ),
            ("GET", second): new_response(200, [{"login": "hubot"}]),
        }
    )
    assert client.list_org_members("acme", OrganizationRole.ADMIN) == ["octocat", "hubot"]
    assert [url for _, url, _ in session.requests] == [first, second]


def test_not_found_raises_not_found_error():
    client, _ = new_client({})
    with pytest.raises(NotFoundError) as exc_info:
        client.get_repo("acme", "nope")
    assert exc_info.value.status == 404


def test_other_failures_raise_api_error():
    url = f"{ENDPOINT}/orgs/acme/memberships/bob"
    client, _ = new_client({("PUT", url): new_response(422, {"message": "Invalid"})})
    with pytest.raises(ApiError) as exc_info:
        client.update_org_membership("acme", "bob", True)
    assert not isinstance(exc_info.value, NotFoundError)
    assert exc_info.value.status == 422
    assert "Invalid" in exc_info.value.body


def test_update_org_membership_returns_state():
    url = f"{ENDPOINT}/orgs/acme/memberships/bob"
    client, session = new_client({("PUT", url): new_response(200, {"state": "pending"})})
    assert client.update_org_membership("acme", "bob", False) == "pending"
    assert session.requests == [("PUT", url, {"role": "member"})]


def test_list_team_repos_parses_permissions():
    url = f"{ENDPOINT}/orgs/acme/teams/devs/repos?per_page=100"
    body = [
        {"name": "widget", "permissions": {"admin": False, "push": True, "pull": True}},
        {"name": "docs", "permissions": {"admin": False, "push": False, "pull": True}},
    ]
    client, _ = new_client({("GET", url): new_response(200, body)})
    assert client.list_team_repos("acme", "devs") == {
        "widget": PermissionLevel.WRITE,
        "docs": PermissionLevel.READ,
    }


def test_list_teams_parses_parent():
    url = f"{ENDPOINT}/orgs/acme/teams?per_page=100"
    body = [
        {
            "id": 2,
            "slug": "web",
            "name": "Web",
            "description": None,
            "privacy": "closed",
            "parent": {"id": 1},
        }
    ]
    client, _ = new_client({("GET", url): new_response(200, body)})
    [team] = client.list_teams("acme")
    assert team.parent_team_id == 1
    assert team.description == ""
    assert team.privacy == Privacy.CLOSED


def test_update_team_repo_uses_api_permission_names():
    url = f"{ENDPOINT}/orgs/acme/teams/devs/repos/acme/widget"
    client, session = new_client({("PUT", url): new_response(204)})
    client.update_team_repo("acme", "devs", "widget", PermissionLevel.READ)
    assert session.requests == [("PUT", url, {"permission": "pull"})]


def test_org_metadata_to_json_renames_display_name():
    metadata = OrgMetadata(
        display_name="Acme Co",
        default_repository_permission=RepositoryPermissionGlobal.WRITE,
    )
    assert org_metadata_to_json(metadata) == {
        "name": "Acme Co",
        "default_repository_permission": "write",
    }


def test_dry_run_does_not_mutate():
    client, session = new_client({}, dry_run=True)

    assert client.update_org_membership("acme", "bob", True) == "active"
    client.remove_org_membership("acme", "eve")
    team = client.create_team("acme", "Front End", "", None)
    assert team.slug == "front-end"
    repo = client.create_repo("acme", RepoRequest(name="widget", private=True))
    assert repo.private and not repo.archived
    client.update_repo("acme", "widget", RepoRequest(description="x"))

    assert session.requests == []


def test_dry_run_created_team_has_no_members():
    client, _ = new_client({}, dry_run=True)
    assert client.list_team_members("acme", "front-end", TeamRole.MEMBER) == []
    assert client.list_team_repos("acme", "front-end") == {}

    client, _ = new_client({}, dry_run=False)
    with pytest.raises(NotFoundError):
        client.list_team_repos("acme", "front-end")

"""Tests for HTTPGitLabClient against a mocked GitLab REST API."""

from __future__ import annotations

import httpx
import pytest

from repoperm.authz.gitlab_api import (
    GitLabAPIError,
    HTTPGitLabClient,
    Project,
    ProjectNotFound,
    RateLimited,
    TokenRejected,
    Visibility,
)


def _client(handler) -> HTTPGitLabClient:
    return HTTPGitLabClient("https://gitlab.mine/", transport=httpx.MockTransport(handler))


def _project_json(visibility: str, project_level=None, group_level=None) -> dict:
    data = {"id": 10, "visibility": visibility}
    if project_level is not None or group_level is not None:
        data["permissions"] = {
            "project_access": None
            if project_level is None
            else {"access_level": project_level},
            "group_access": None if group_level is None else {"access_level": group_level},
        }
    return data


class TestGetProject:
    async def test_api_base_url(self):
        assert _client(lambda r: None).api_base_url == "https://gitlab.mine/api/v4"

    async def test_public_anonymous(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_project_json("public"))

        project = await _client(handler).get_project(10, None)
        assert project == Project(id=10, visibility=Visibility.PUBLIC)
        assert seen[0].url == "https://gitlab.mine/api/v4/projects/10"
        assert "authorization" not in seen[0].headers

    async def test_bearer_token_sent(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_project_json("internal"))

        project = await _client(handler).get_project(10, "tok")
        assert project.visibility is Visibility.INTERNAL
        assert seen[0].headers["authorization"] == "Bearer tok"

    @pytest.mark.parametrize(
        ("project_level", "group_level", "content", "guests"),
        [
            (30, None, {"7"}, set()),
            (None, 20, {"7"}, set()),
            (10, 40, {"7"}, set()),
            (10, None, set(), {"7"}),
            (None, 15, set(), {"7"}),
        ],
        ids=["developer", "group-reporter", "group-wins", "guest", "planner"],
    )
    async def test_private_membership(self, project_level, group_level, content, guests):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v4/user":
                return httpx.Response(200, json={"id": 7, "username": "u7"})
            return httpx.Response(
                200, json=_project_json("private", project_level, group_level)
            )

        project = await _client(handler).get_project(10, "tok")
        assert project.visibility is Visibility.PRIVATE
        assert project.content_access == frozenset(content)
        assert project.guest_access == frozenset(guests)

    async def test_private_without_permissions_block(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=_project_json("private"))

        project = await _client(handler).get_project(10, "tok")
        assert project == Project(id=10, visibility=Visibility.PRIVATE)
        assert paths == ["/api/v4/projects/10"]

    async def test_user_looked_up_once_per_token(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/api/v4/user":
                return httpx.Response(200, json={"id": 7})
            return httpx.Response(200, json=_project_json("private", 30))

        client = _client(handler)
        for pid in (10, 11, 12):
            project = await client.get_project(pid, "tok")
            assert project.content_access == frozenset({"7"})
        assert paths.count("/api/v4/user") == 1

        await client.get_project(10, "other-tok")
        assert paths.count("/api/v4/user") == 2

    @pytest.mark.parametrize("status", [403, 404])
    async def test_not_found(self, status):
        client = _client(lambda r: httpx.Response(status, json={"message": "404"}))
        with pytest.raises(ProjectNotFound) as excinfo:
            await client.get_project(10, "tok")
        assert excinfo.value.project_id == 10

    @pytest.mark.parametrize(
        ("status", "exc_type"),
        [
            (401, TokenRejected),
            (429, RateLimited),
            (500, GitLabAPIError),
            (502, GitLabAPIError),
        ],
    )
    async def test_error_statuses(self, status, exc_type):
        client = _client(lambda r: httpx.Response(status))
        with pytest.raises(exc_type) as excinfo:
            await client.get_project(10, "tok")
        assert excinfo.value.status_code == status

    async def test_not_found_is_not_an_api_error(self):
        assert not issubclass(ProjectNotFound, GitLabAPIError)

    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GitLabAPIError, match="failed"):
            await _client(handler).get_project(10, None)

    async def test_invalid_json(self):
        client = _client(lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(GitLabAPIError, match="invalid JSON"):
            await client.get_project(10, None)

    async def test_unexpected_payload(self):
        client = _client(lambda r: httpx.Response(200, json=[1, 2]))
        with pytest.raises(GitLabAPIError, match="unexpected payload"):
            await client.get_project(10, None)

    async def test_unknown_visibility(self):
        client = _client(lambda r: httpx.Response(200, json={"visibility": "secret"}))
        with pytest.raises(GitLabAPIError, match="unknown visibility"):
            await client.get_project(10, None)

    async def test_user_without_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v4/user":
                return httpx.Response(200, json={})
            return httpx.Response(200, json=_project_json("private", 30))

        with pytest.raises(GitLabAPIError, match="no id"):
            await _client(handler).get_project(10, "tok")

    async def test_user_lookup_token_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v4/user":
                return httpx.Response(401)
            return httpx.Response(200, json=_project_json("private", 30))

        with pytest.raises(TokenRejected):
            await _client(handler).get_project(10, "tok")

"""GitLab REST API (v4) client for project lookups."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

# GitLab access level from which repository content is readable
REPORTER_ACCESS = 20
MAX_CACHED_USERS = 1024


class Visibility(enum.Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class Project:
    """GitLab's view of a project.

    ``content_access`` and ``guest_access`` are disjoint sets of account
    IDs.  Guests can see that a private project exists but cannot read
    its contents.
    """

    id: int
    visibility: Visibility
    content_access: frozenset[str] = field(default_factory=frozenset)
    guest_access: frozenset[str] = field(default_factory=frozenset)


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class ProjectNotFound(Exception):
    """The project does not exist or the credential cannot see it."""

    def __init__(self, project_id: int) -> None:
        super().__init__(f"project {project_id} not found")
        self.project_id = project_id


class GitLabAPIError(Exception):
    """Transport or protocol failure talking to GitLab."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokenRejected(GitLabAPIError):
    """GitLab refused the bearer token (revoked or expired)."""


class RateLimited(GitLabAPIError):
    """GitLab rejected the request with 429."""


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


class GitLabClient(Protocol):
    """Anything that can look up a single GitLab project."""

    async def get_project(self, project_id: int, token: str | None) -> Project:
        """Return *project_id* as seen by *token* (``None`` = anonymous).

        Raises ``ProjectNotFound`` when the project is missing or hidden
        from the caller, ``GitLabAPIError`` for everything else.
        """
        ...


class HTTPGitLabClient:
    """``GitLabClient`` backed by the GitLab REST API.

    Private-project membership is derived from the ``permissions`` block
    GitLab returns for the bearer of the token, so each resulting
    ``Project`` only describes that one account.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base_url = f"{base_url.rstrip('/')}/api/v4"
        self._timeout = timeout
        self._transport = transport
        # token -> GitLab user ID of its bearer
        self._user_ids: dict[str, str] = {}

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def get_project(self, project_id: int, token: str | None) -> Project:
        """GET /projects/{id}: 404/403 mean not visible, 401 means a bad token."""
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with self._client() as client:
            data = await self._get_json(
                client, f"/projects/{project_id}", headers, project_id=project_id
            )
            visibility = _parse_visibility(data, project_id)
            if visibility is not Visibility.PRIVATE or not token:
                return Project(id=project_id, visibility=visibility)

            level = _access_level(data.get("permissions"))
            if level <= 0:
                return Project(id=project_id, visibility=visibility)

            user_id = await self._user_id(client, token, headers)

        if level >= REPORTER_ACCESS:
            return Project(
                id=project_id,
                visibility=visibility,
                content_access=frozenset({user_id}),
            )
        return Project(
            id=project_id,
            visibility=visibility,
            guest_access=frozenset({user_id}),
        )

    async def _user_id(
        self, client: httpx.AsyncClient, token: str, headers: dict[str, str]
    ) -> str:
        user_id = self._user_ids.get(token)
        if user_id is not None:
            return user_id
        user = await self._get_json(client, "/user", headers)
        user_id = str(user.get("id", ""))
        if not user_id:
            raise GitLabAPIError("GitLab /user response has no id")
        if len(self._user_ids) >= MAX_CACHED_USERS:
            self._user_ids.clear()
        self._user_ids[token] = user_id
        return user_id

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        path: str,
        headers: dict[str, str],
        project_id: int | None = None,
    ) -> dict[str, Any]:
        url = f"{self._api_base_url}{path}"
        try:
            resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise GitLabAPIError(f"GitLab request to {url} failed: {exc}") from exc

        if resp.status_code in (403, 404) and project_id is not None:
            raise ProjectNotFound(project_id)
        if resp.status_code == 401:
            raise TokenRejected("GitLab rejected the access token", 401)
        if resp.status_code == 429:
            raise RateLimited("GitLab rate limit exceeded", 429)
        if resp.status_code != 200:
            raise GitLabAPIError(
                f"GitLab returned HTTP {resp.status_code} for {url}",
                resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise GitLabAPIError(f"GitLab returned invalid JSON for {url}") from exc
        if not isinstance(data, dict):
            raise GitLabAPIError(f"GitLab returned unexpected payload for {url}")
        return data


def _parse_visibility(data: dict[str, Any], project_id: int) -> Visibility:
    raw = data.get("visibility")
    try:
        return Visibility(raw)
    except ValueError:
        raise GitLabAPIError(
            f"project {project_id} has unknown visibility {raw!r}"
        ) from None


def _access_level(permissions: Any) -> int:
    """Highest of the project- and group-level access for the token bearer."""
    if not isinstance(permissions, dict):
        return 0
    level = 0
    for key in ("project_access", "group_access"):
        entry = permissions.get(key)
        if isinstance(entry, dict):
            try:
                level = max(level, int(entry.get("access_level") or 0))
            except (TypeError, ValueError):
                logger.debug("Ignoring malformed %s in GitLab permissions", key)
    return level

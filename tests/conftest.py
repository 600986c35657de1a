"""Shared fixtures for the repoperm test suite."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import pytest
import pytest_asyncio

from repoperm import db
from repoperm.authz.gitlab_api import Project, ProjectNotFound, Visibility
from repoperm.authz.provider import ExternalAccount, ExternalRepoSpec, Repo

GITLAB_URL = "https://gitlab.mine/"

# ---------------------------------------------------------------------------
# Fake GitLab
# ---------------------------------------------------------------------------


class FakeGitLab:
    """In-memory stand-in for ``HTTPGitLabClient``.

    Behaves like the real API from the caller's point of view: private
    projects are only returned to members, internal projects only to
    authenticated callers, anything else is ``ProjectNotFound``.
    """

    def __init__(
        self,
        public: list[int] | None = None,
        internal: list[int] | None = None,
        private: dict[int, tuple[list[str], list[str]]] | None = None,
        tokens: dict[str, str] | None = None,
    ) -> None:
        """*private* maps project ID → (guest account IDs, content account IDs)."""
        self.projects: dict[int, Project] = {}
        for pid in public or []:
            self.projects[pid] = Project(id=pid, visibility=Visibility.PUBLIC)
        for pid in internal or []:
            self.projects[pid] = Project(id=pid, visibility=Visibility.INTERNAL)
        for pid, (guests, content) in (private or {}).items():
            self.projects[pid] = Project(
                id=pid,
                visibility=Visibility.PRIVATE,
                content_access=frozenset(content),
                guest_access=frozenset(guests),
            )
        self.tokens = tokens or {}
        self.errors: dict[int, BaseException] = {}
        self.calls: Counter[tuple[str, int]] = Counter()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def get_project(self, project_id: int, token: str | None) -> Project:
        self.calls[(token or "", project_id)] += 1
        if project_id in self.errors:
            raise self.errors[project_id]

        proj = self.projects.get(project_id)
        if proj is None:
            raise ProjectNotFound(project_id)
        if proj.visibility is Visibility.PUBLIC:
            return proj

        account_id = self.tokens.get(token or "")
        if account_id is None:
            raise ProjectNotFound(project_id)
        if proj.visibility is Visibility.INTERNAL:
            return proj
        if account_id in proj.content_access or account_id in proj.guest_access:
            return proj
        raise ProjectNotFound(project_id)


# ---------------------------------------------------------------------------
# Mapping-backed cache store
# ---------------------------------------------------------------------------


class MappingCacheStore(dict):
    """``CacheStore`` over a plain dict, so tests can inspect raw entries."""

    async def get(self, key: str) -> bytes | None:  # type: ignore[override]
        return dict.get(self, key)

    async def set(self, key: str, value: bytes) -> None:
        self[key] = value

    async def delete(self, key: str) -> None:
        self.pop(key, None)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def acct(
    account_id: str,
    token: str,
    service_type: str = "gitlab",
    service_id: str = GITLAB_URL,
) -> ExternalAccount:
    return ExternalAccount(
        account_id=account_id,
        service_type=service_type,
        service_id=service_id,
        token=token,
    )


def repo(name: str, service_type: str, service_id: str, external_id: str) -> Repo:
    if not service_type and not service_id and not external_id:
        return Repo(name=name)
    return Repo(
        name=name,
        external=ExternalRepoSpec(
            id=external_id, service_type=service_type, service_id=service_id
        ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_gitlab() -> FakeGitLab:
    """The scenario used throughout the suite.

    - 99 is public, 98 is internal
    - 10 is private: u1 has content access, u2 is a guest
    """
    return FakeGitLab(
        public=[99],
        internal=[98],
        private={10: (["u2"], ["u1"])},
        tokens={"oauth-u1": "u1", "oauth-u2": "u2", "oauth-u3": "u3"},
    )


@pytest.fixture()
def cache_store() -> MappingCacheStore:
    return MappingCacheStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture()
async def initialized_db(tmp_path: Path):
    """Configure ``repoperm.db`` against a fresh temp file and create tables."""
    db_path = tmp_path / "repoperm.sqlite3"
    db.configure(db_path)
    await db.init_db()
    yield db_path
    await db.dispose()

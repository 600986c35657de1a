"""GitLab authorization provider implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable

from repoperm.authz.cache import (
    CacheStore,
    MemoryCacheStore,
    PermissionCache,
    PermissionSnapshot,
    account_key,
)
from repoperm.authz.config import GITLAB, GitLabProviderConfig, normalize_service_id
from repoperm.authz.gitlab_api import GitLabAPIError, GitLabClient, HTTPGitLabClient
from repoperm.authz.provider import (
    READ_ONLY,
    AuthzProvider,
    ExternalAccount,
    PermissionResolutionError,
    PermissionSet,
    Repo,
)
from repoperm.authz.resolver import VisibilityResolver

logger = logging.getLogger(__name__)


class GitLabProvider(AuthzProvider):
    """GitLab authz provider.

    Resolves read access from each project's visibility tier and the
    account's membership, caching the outcomes per account for
    ``config.cache_ttl`` seconds.

    Lookup failures other than "not found" follow
    ``config.on_lookup_error``: ``"skip"`` leaves just that repository
    out of the result, ``"raise"`` fails the whole call with
    ``PermissionResolutionError``.
    """

    def __init__(
        self,
        config: GitLabProviderConfig,
        client: GitLabClient | None = None,
        cache_store: CacheStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._service_id = config.service_id
        if client is None:
            client = HTTPGitLabClient(config.base_url, timeout=config.api_timeout)
        self._resolver = VisibilityResolver(client)
        self._cache: PermissionCache | None = None
        if config.cache_ttl > 0:
            if cache_store is None:
                cache_store = MemoryCacheStore()
            self._cache = PermissionCache(cache_store, clock)

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def service_type(self) -> str:
        return GITLAB

    @property
    def service_id(self) -> str:
        return self._service_id

    @property
    def _service_key(self) -> str:
        return f"{GITLAB}:{self._service_id}"

    # ------------------------------------------------------------ partition

    def owns(self, repo: Repo) -> bool:
        ext = repo.external
        if ext is None or ext.service_type != GITLAB:
            return False
        return normalize_service_id(ext.service_id) == self._service_id

    def repos(self, repos: Iterable[Repo]) -> tuple[set[Repo], set[Repo]]:
        mine: set[Repo] = set()
        others: set[Repo] = set()
        for repo in repos:
            (mine if self.owns(repo) else others).add(repo)
        return mine, others

    def _scoped(self, account: ExternalAccount | None) -> ExternalAccount | None:
        """Return *account* if it is a signed-in account of this instance.

        Anything else is resolved as anonymous, so a foreign token is never
        sent to this instance.
        """
        if account is None or not account.authenticated:
            return None
        if account.service_type != GITLAB:
            return None
        if normalize_service_id(account.service_id) != self._service_id:
            return None
        return account

    # ------------------------------------------------------------ perms

    async def repo_perms(
        self,
        account: ExternalAccount | None,
        repos: Iterable[Repo],
        *,
        timeout: float | None = None,
    ) -> dict[str, PermissionSet]:
        if timeout is None:
            return await self._repo_perms(account, repos)
        async with asyncio.timeout(timeout):
            return await self._repo_perms(account, repos)

    async def _repo_perms(
        self, account: ExternalAccount | None, repos: Iterable[Repo]
    ) -> dict[str, PermissionSet]:
        mine, _ = self.repos(repos)
        account = self._scoped(account)

        targets: dict[Repo, int] = {}
        for repo in mine:
            project_id = _project_id(repo)
            if project_id is None:
                logger.warning(
                    "Ignoring %s: invalid GitLab project ID %r",
                    repo.name,
                    repo.external.id if repo.external else None,
                )
                continue
            targets[repo] = project_id
        if not targets:
            return {}

        akey = account_key(account)
        snapshot = None
        if self._cache is not None:
            snapshot = await self._cache.get(akey, self._service_key)
        known = dict(snapshot.repos) if snapshot is not None else {}

        pending: dict[int, Repo] = {}
        for repo, project_id in targets.items():
            if project_id not in known:
                pending.setdefault(project_id, repo)
        logger.debug(
            "%s: %d cached, %d to resolve for %s",
            self.name,
            len(targets) - len(pending),
            len(pending),
            akey,
        )

        fresh = await self._resolve_all(account, pending)
        if fresh and self._cache is not None:
            if snapshot is None:
                snapshot = PermissionSnapshot(
                    ttl=self._config.cache_ttl, written_at=self._cache.now()
                )
            await self._cache.put(akey, self._service_key, snapshot.merge(fresh))

        known.update(fresh)
        return {
            repo.name: READ_ONLY
            for repo, project_id in targets.items()
            if known.get(project_id)
        }

    async def _resolve_all(
        self, account: ExternalAccount | None, pending: dict[int, Repo]
    ) -> dict[int, bool]:
        if not pending:
            return {}
        sem = asyncio.Semaphore(self._config.max_concurrency)
        tasks = [
            asyncio.ensure_future(self._resolve_one(sem, account, project_id, repo))
            for project_id, repo in pending.items()
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return {pid: granted for pid, granted in results if granted is not None}

    async def _resolve_one(
        self,
        sem: asyncio.Semaphore,
        account: ExternalAccount | None,
        project_id: int,
        repo: Repo,
    ) -> tuple[int, bool | None]:
        async with sem:
            try:
                return project_id, await self._resolver.resolve(account, project_id)
            except GitLabAPIError as exc:
                if self._config.on_lookup_error == "raise":
                    logger.exception(
                        "GitLab lookup failed for %s (project %d)", repo.name, project_id
                    )
                    raise PermissionResolutionError(repo, exc) from exc
                logger.warning(
                    "Skipping %s: GitLab lookup for project %d failed: %s",
                    repo.name,
                    project_id,
                    exc,
                )
                return project_id, None

    # ------------------------------------------------------------ cache

    async def invalidate(self, account: ExternalAccount | None) -> None:
        """Forget every cached outcome for *account* on this instance."""
        if self._cache is None:
            return
        account = self._scoped(account)
        await self._cache.invalidate(account_key(account), self._service_key)


def _project_id(repo: Repo) -> int | None:
    if repo.external is None:
        return None
    try:
        project_id = int(repo.external.id)
    except ValueError:
        return None
    return project_id if project_id > 0 else None

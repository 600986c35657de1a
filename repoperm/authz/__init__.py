"""Repository authorization for repoperm.

This package provides:

* **Provider-agnostic data models** (``ExternalAccount``, ``Repo``,
  ``Perm``) and the ``AuthzProvider`` base class.
* **A GitLab provider** that resolves read access from each project's
  visibility tier (public / internal / private) and the account's
  membership, via the GitLab REST API.
* **TTL caching** of resolved permissions per account, in memory or in
  SQLite, to avoid hammering the upstream API.

A repository the account cannot read is *absent* from the mapping
returned by ``repo_perms``; use ``has_read`` rather than indexing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from repoperm.config import ConfigManager

from repoperm.authz.cache import (
    CacheStore,
    MemoryCacheStore,
    PermissionCache,
    PermissionSnapshot,
    SQLCacheStore,
)
from repoperm.authz.config import GitLabProviderConfig
from repoperm.authz.gitlab import GitLabProvider
from repoperm.authz.gitlab_api import (
    GitLabAPIError,
    GitLabClient,
    HTTPGitLabClient,
    Project,
    ProjectNotFound,
    RateLimited,
    TokenRejected,
    Visibility,
)
from repoperm.authz.provider import (
    READ_ONLY,
    AuthzProvider,
    ExternalAccount,
    ExternalRepoSpec,
    Perm,
    PermissionResolutionError,
    PermissionSet,
    Repo,
    has_read,
)

__all__ = [
    "READ_ONLY",
    "AuthzProvider",
    "CacheStore",
    "ExternalAccount",
    "ExternalRepoSpec",
    "GitLabAPIError",
    "GitLabClient",
    "GitLabProvider",
    "GitLabProviderConfig",
    "HTTPGitLabClient",
    "MemoryCacheStore",
    "Perm",
    "PermissionCache",
    "PermissionResolutionError",
    "PermissionSet",
    "PermissionSnapshot",
    "Project",
    "ProjectNotFound",
    "RateLimited",
    "Repo",
    "SQLCacheStore",
    "TokenRejected",
    "Visibility",
    "has_read",
    "setup_providers",
]


async def setup_providers(
    config_manager: ConfigManager,
    cache_store: CacheStore | None = None,
    client_factory: Callable[[GitLabProviderConfig], GitLabClient] | None = None,
) -> dict[str, GitLabProvider]:
    """Build one provider per configured code-host instance.

    All providers share one cache store; their keys never collide since
    each is scoped by the instance's base URL.  When *cache_store* is not
    given, the ``cache_backend`` setting selects it (``"sqlite"``
    configures and initialises ``repoperm.db``).  *client_factory*
    replaces the HTTP client, e.g. with a fake in tests.
    """
    g = config_manager.global_config
    if cache_store is None:
        if g.cache_backend == "sqlite":
            from repoperm import db

            db.configure(g.database_path)
            await db.init_db()
            cache_store = SQLCacheStore()
        else:
            cache_store = MemoryCacheStore()

    providers: dict[str, GitLabProvider] = {}
    for name, entry in config_manager.providers.items():
        pconfig = config_manager.to_provider_config(entry)
        client = client_factory(pconfig) if client_factory is not None else None
        providers[name] = GitLabProvider(pconfig, client=client, cache_store=cache_store)
    return providers

"""Declarative configuration manager for repoperm.

Parses a TOML config file and provides:

* Global settings for the permission cache (TTL, backend, database path)
  and for resolution (concurrency, lookup-error policy).
* Provider definitions, one per code-host instance.
* Conversion helpers building the ``GitLabProviderConfig`` objects
  consumed by the authz subsystem.

Environment variables are honoured as a fallback when no config file is
present (see ``ConfigManager.from_env``).
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from repoperm.authz.config import (
    DEFAULT_API_TIMEOUT,
    DEFAULT_CACHE_TTL,
    DEFAULT_MAX_CONCURRENCY,
    GITLAB,
    LOOKUP_ERROR_POLICIES,
    GitLabProviderConfig,
)

# ------------------------------------------------------------------
# Data classes
# ------------------------------------------------------------------

_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

PROVIDER_TYPES = (GITLAB,)
CACHE_BACKENDS = ("memory", "sqlite")


@dataclass(frozen=True)
class ProviderEntry:
    """Configuration for a single provider instance.

    ``name`` is the user-chosen unique identifier (e.g. ``"gitlab-mine"``).
    ``type`` selects the backend implementation (only ``"gitlab"`` today).
    """

    name: str
    type: str
    url: str
    cache_ttl: float | None = None  # falls back to the global TTL
    api_timeout: float = DEFAULT_API_TIMEOUT


@dataclass(frozen=True)
class GlobalConfig:
    """Top-level / global settings."""

    cache_ttl: float = DEFAULT_CACHE_TTL
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    on_lookup_error: str = "skip"
    cache_backend: str = "memory"
    database_path: str = "repoperm.sqlite3"


# ------------------------------------------------------------------
# ConfigManager
# ------------------------------------------------------------------


class ConfigManager:
    """Manages the declarative TOML configuration for repoperm.

    Typical usage::

        cfg = ConfigManager.from_file(Path("repoperm.toml"))
        providers = await setup_providers(cfg)
    """

    def __init__(
        self,
        global_config: GlobalConfig,
        providers: dict[str, ProviderEntry],
    ) -> None:
        self._global = global_config
        self._providers = providers

    # -------------------------------------------------------------- factories

    @classmethod
    def from_file(cls, path: Path) -> ConfigManager:
        """Load configuration from a TOML file."""
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        return cls._from_dict(raw)

    @classmethod
    def from_str(cls, toml_str: str) -> ConfigManager:
        """Load configuration from a TOML string (handy for tests)."""
        raw = tomllib.loads(toml_str)
        return cls._from_dict(raw)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConfigManager:
        """Build a configuration from environment variables.

        Environment variables
        ---------------------
        REPOPERM_GITLAB_URL        : base URL of the GitLab instance; when unset
                                     no provider is configured
        REPOPERM_CACHE_TTL         : cache TTL in seconds  (default: 10800)
        REPOPERM_MAX_CONCURRENCY   : concurrent lookups per call  (default: 8)
        REPOPERM_ON_LOOKUP_ERROR   : "skip" or "raise"  (default: skip)
        REPOPERM_CACHE_BACKEND     : "memory" or "sqlite"  (default: memory)
        REPOPERM_DATABASE_PATH     : SQLite file for the sqlite backend
        """
        env = os.environ if environ is None else environ
        raw: dict[str, Any] = {
            "global": {
                "cache_ttl": float(env.get("REPOPERM_CACHE_TTL", DEFAULT_CACHE_TTL)),
                "max_concurrency": int(
                    env.get("REPOPERM_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)
                ),
                "on_lookup_error": env.get("REPOPERM_ON_LOOKUP_ERROR", "skip"),
                "cache_backend": env.get("REPOPERM_CACHE_BACKEND", "memory"),
                "database_path": env.get(
                    "REPOPERM_DATABASE_PATH", "repoperm.sqlite3"
                ),
            },
            "providers": {},
        }
        gitlab_url = env.get("REPOPERM_GITLAB_URL", "")
        if gitlab_url:
            raw["providers"][GITLAB] = {"type": GITLAB, "url": gitlab_url}
        return cls._from_dict(raw)

    @classmethod
    def _from_dict(cls, raw: dict[str, Any]) -> ConfigManager:
        """Build a ``ConfigManager`` from a parsed TOML dictionary."""
        # -- global section --
        g = raw.get("global", {})
        global_config = GlobalConfig(
            cache_ttl=float(g.get("cache_ttl", DEFAULT_CACHE_TTL)),
            max_concurrency=int(g.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)),
            on_lookup_error=str(g.get("on_lookup_error", "skip")),
            cache_backend=str(g.get("cache_backend", "memory")),
            database_path=str(g.get("database_path", "repoperm.sqlite3")),
        )
        if global_config.cache_ttl < 0:
            raise ValueError("cache_ttl must not be negative")
        if global_config.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if global_config.on_lookup_error not in LOOKUP_ERROR_POLICIES:
            raise ValueError(
                f"on_lookup_error must be one of {LOOKUP_ERROR_POLICIES}, "
                f"got {global_config.on_lookup_error!r}"
            )
        if global_config.cache_backend not in CACHE_BACKENDS:
            raise ValueError(
                f"cache_backend must be one of {CACHE_BACKENDS}, "
                f"got {global_config.cache_backend!r}"
            )

        # -- providers section --
        providers: dict[str, ProviderEntry] = {}
        for name, pdata in raw.get("providers", {}).items():
            if not isinstance(pdata, dict):
                continue

            if not _NAME_RE.match(name):
                raise ValueError(
                    f"Provider name {name!r} is invalid; "
                    "use only letters, digits, hyphens, and underscores"
                )

            ptype = pdata.get("type", "")
            if not ptype:
                raise ValueError(f"Provider {name!r} missing required 'type' field")
            if ptype not in PROVIDER_TYPES:
                raise ValueError(f"Provider {name!r} has unknown type {ptype!r}")

            url = pdata.get("url", "")
            if not url:
                raise ValueError(f"Provider {name!r} missing required 'url' field")

            ttl = pdata.get("cache_ttl")
            if ttl is not None:
                ttl = float(ttl)
                if ttl < 0:
                    raise ValueError(f"Provider {name!r} has a negative cache_ttl")

            providers[name] = ProviderEntry(
                name=name,
                type=ptype,
                url=url.rstrip("/"),
                cache_ttl=ttl,
                api_timeout=float(pdata.get("api_timeout", DEFAULT_API_TIMEOUT)),
            )

        return cls(global_config, providers)

    @classmethod
    def default(cls) -> ConfigManager:
        """Return an empty (no providers) configuration."""
        return cls(GlobalConfig(), {})

    # -------------------------------------------------------------- accessors

    @property
    def global_config(self) -> GlobalConfig:
        return self._global

    @property
    def providers(self) -> dict[str, ProviderEntry]:
        return dict(self._providers)

    # -------------------------------------------- authz subsystem integration

    def to_provider_config(self, entry: ProviderEntry) -> GitLabProviderConfig:
        """Build a ``GitLabProviderConfig`` from a provider entry."""
        if entry.type != GITLAB:
            raise ValueError(f"Unknown provider type: {entry.type!r}")
        ttl = entry.cache_ttl if entry.cache_ttl is not None else self._global.cache_ttl
        return GitLabProviderConfig(
            name=entry.name,
            base_url=entry.url,
            cache_ttl=ttl,
            max_concurrency=self._global.max_concurrency,
            on_lookup_error=self._global.on_lookup_error,
            api_timeout=entry.api_timeout,
        )

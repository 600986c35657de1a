"""Per-provider configuration for the authz subsystem."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

GITLAB = "gitlab"

LOOKUP_ERROR_POLICIES = ("skip", "raise")

DEFAULT_CACHE_TTL = 3 * 60 * 60  # seconds
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_API_TIMEOUT = 10


def normalize_service_id(url: str) -> str:
    """Canonical form of a code-host base URL.

    Scheme and host are lower-cased and a single trailing slash is
    appended, so ``https://GitLab.mine`` and ``https://gitlab.mine/``
    compare equal.
    """
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/") + "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


@dataclass(frozen=True)
class GitLabProviderConfig:
    """Configuration for a single GitLab provider instance."""

    name: str
    base_url: str  # e.g. "https://gitlab.example.com"
    cache_ttl: float = DEFAULT_CACHE_TTL  # <= 0 disables caching
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    on_lookup_error: str = "skip"  # "skip" | "raise"
    api_timeout: float = DEFAULT_API_TIMEOUT

    def __post_init__(self) -> None:
        if self.on_lookup_error not in LOOKUP_ERROR_POLICIES:
            raise ValueError(
                f"on_lookup_error must be one of {LOOKUP_ERROR_POLICIES}, "
                f"got {self.on_lookup_error!r}"
            )
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    @property
    def service_id(self) -> str:
        return normalize_service_id(self.base_url)

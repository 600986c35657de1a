"""Provider abstraction: base class and data models."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Mapping


class Perm(enum.Enum):
    """A repository capability.  Only ``READ`` is modeled today."""

    READ = "read"


PermissionSet = frozenset[Perm]

READ_ONLY: PermissionSet = frozenset({Perm.READ})


@dataclass(frozen=True, slots=True)
class ExternalAccount:
    """A user's identity on an external code host."""

    account_id: str
    service_type: str
    service_id: str  # e.g. "https://gitlab.example.com/"
    token: str = ""

    def __repr__(self) -> str:
        # never leak the bearer token into logs
        return (
            f"ExternalAccount(account_id={self.account_id!r}, "
            f"service_type={self.service_type!r}, service_id={self.service_id!r})"
        )

    @property
    def authenticated(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True, slots=True)
class ExternalRepoSpec:
    """Identifies a repository on its code host."""

    id: str
    service_type: str
    service_id: str


@dataclass(frozen=True, slots=True)
class Repo:
    """A candidate repository as known to the caller."""

    name: str
    external: ExternalRepoSpec | None = None


class PermissionResolutionError(Exception):
    """Raised when a repository's permissions could not be determined.

    Distinct from denial: the code host failed to answer, so the caller
    must not read the missing entry as "no access".
    """

    def __init__(self, repo: Repo, cause: BaseException) -> None:
        super().__init__(f"could not resolve permissions for {repo.name!r}: {cause}")
        self.repo = repo
        self.cause = cause


def has_read(perms: Mapping[str, PermissionSet], repo_name: str) -> bool:
    """Return True iff *perms* grants read access to *repo_name*.

    Providers express denial by leaving a repository out of the mapping
    altogether, so a missing key and an empty set both mean "no access".
    """
    return Perm.READ in perms.get(repo_name, frozenset())


class AuthzProvider(ABC):
    """Abstract base class for repository authorization providers.

    A provider is bound to one code-host instance.  ``repos`` tells the
    caller which repositories it is responsible for; ``repo_perms``
    resolves the permissions an account holds on them.
    """

    @property
    @abstractmethod
    def service_type(self) -> str:
        """Short, stable code-host type tag (e.g. 'gitlab')."""
        ...

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Normalized base URL of the code-host instance."""
        ...

    @abstractmethod
    def repos(self, repos: Iterable[Repo]) -> tuple[set[Repo], set[Repo]]:
        """Split *repos* into ``(mine, others)``."""
        ...

    @abstractmethod
    async def repo_perms(
        self,
        account: ExternalAccount | None,
        repos: Iterable[Repo],
        *,
        timeout: float | None = None,
    ) -> dict[str, PermissionSet]:
        """Return ``{repo name: permissions}`` for the repos *account* may read.

        Repositories without any granted permission are absent.
        """
        ...

"""Decide whether an account may read a single GitLab project."""

from __future__ import annotations

import logging

from repoperm.authz.gitlab_api import GitLabClient, ProjectNotFound, Visibility
from repoperm.authz.provider import ExternalAccount

logger = logging.getLogger(__name__)


class VisibilityResolver:
    """Applies GitLab's visibility tiers and project ACLs.

    * Missing / hidden project → denied.
    * ``public``   → granted to everyone, including anonymous callers.
    * ``internal`` → granted to any authenticated account.
    * ``private``  → granted only to accounts with content access;
      guest (metadata-only) access is not enough.

    An account without a token is treated as anonymous.
    """

    def __init__(self, client: GitLabClient) -> None:
        self._client = client

    async def resolve(self, account: ExternalAccount | None, project_id: int) -> bool:
        if account is not None and not account.authenticated:
            account = None
        token = account.token if account is not None else None

        try:
            project = await self._client.get_project(project_id, token)
        except ProjectNotFound:
            logger.debug("Project %d not visible to %r", project_id, account)
            return False

        if project.visibility is Visibility.PUBLIC:
            return True
        if account is None:
            return False
        if project.visibility is Visibility.INTERNAL:
            return True
        return account.account_id in project.content_access

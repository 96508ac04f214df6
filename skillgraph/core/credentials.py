"""Resolve which GitHub access token a sync should use for a student."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from skillgraph.core.db import Datastore, db_get_integration_token

LOGGER = logging.getLogger(__name__)


class ReauthorizationRequired(Exception):
    """Raised when no usable GitHub credential exists for a student."""

    def __init__(self, message: str = "GitHub authorization required", student_id: str | None = None):
        super().__init__(message)
        self.student_id = student_id


class CredentialSource(str, Enum):
    OAUTH = "oauth"
    INTEGRATION = "integration"
    STATIC = "static"


@dataclass(frozen=True)
class ResolvedCredential:
    token: str
    source: CredentialSource


class CredentialResolver:
    """Tries the OAuth session token, then the stored integration token, then the static token."""

    def __init__(self, store: Datastore | None, static_token: str = "") -> None:
        self.store = store
        self.static_token = (static_token or "").strip()
        self._oauth_tokens: dict[str, str] = {}

    def remember_oauth_token(self, student_id: str, token: str) -> None:
        token = (token or "").strip()
        if token:
            self._oauth_tokens[student_id] = token
        else:
            self._oauth_tokens.pop(student_id, None)

    def forget(self, student_id: str) -> None:
        self._oauth_tokens.pop(student_id, None)

    async def resolve(
        self, student_id: str | None, allow_static: bool = True
    ) -> ResolvedCredential:
        if student_id:
            oauth_token = self._oauth_tokens.get(student_id)
            if oauth_token:
                return ResolvedCredential(oauth_token, CredentialSource.OAUTH)

            if self.store is not None:
                stored = await db_get_integration_token(self.store, student_id, "github")
                if stored:
                    return ResolvedCredential(stored.strip(), CredentialSource.INTEGRATION)

        if allow_static and self.static_token:
            LOGGER.info("Using static GitHub token for student=%s", student_id or "-")
            return ResolvedCredential(self.static_token, CredentialSource.STATIC)

        raise ReauthorizationRequired(student_id=student_id)

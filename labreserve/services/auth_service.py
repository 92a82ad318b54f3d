"""Bearer-token identity resolution for administrators and requesters."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from labreserve.domain.errors import UnauthenticatedError
from labreserve.domain.models import CallerIdentity, Role
from labreserve.utils.config import Settings, get_settings
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)


class AdminTokenNotConfiguredError(UnauthenticatedError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(UnauthenticatedError):
    """Raised when provided token is invalid."""


class AuthService:
    """Maps bearer tokens to caller identities.

    Administrators log in with the configured ADMIN_TOKEN. Requester tokens are
    minted through `issue_token` for identities vouched for by the external
    identity provider.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, CallerIdentity] = {}
        self._lock = Lock()

    @property
    def admin_identity(self) -> CallerIdentity:
        return CallerIdentity(
            uid=f"admin:{self._settings.admin_login_id}",
            login_id=self._settings.admin_login_id,
            role=Role.ADMIN,
            name=self._settings.admin_name,
        )

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        return self.issue_token(self.admin_identity)

    def issue_token(self, identity: CallerIdentity) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = identity
        logger.info("Session issued | login_id=%s | role=%s", identity.login_id, identity.role.value)
        return token

    def revoke(self, bearer_token: str) -> None:
        with self._lock:
            identity = self._sessions.pop(bearer_token, None)
        if identity is not None:
            logger.info("Session revoked | login_id=%s", identity.login_id)

    def resolve(self, bearer_token: str) -> CallerIdentity:
        if not bearer_token:
            raise UnauthenticatedError("Bearer token is required")
        with self._lock:
            sessions = list(self._sessions.items())
        for token, identity in sessions:
            if secrets.compare_digest(bearer_token, token):
                return identity
        raise UnauthenticatedError("Invalid bearer token")

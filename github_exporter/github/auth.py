"""GitHub authentication handlers."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import jwt

from .exceptions import GitHubAuthenticationError


@dataclass
class AuthToken:
    """Authentication token with metadata."""

    token: str
    token_type: str = "Bearer"
    expires_at: int | None = None

    @property
    def is_expired(self) -> bool:
        """Check if token is expired."""
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at

    def to_header(self) -> dict[str, str]:
        """Convert to authorization header."""
        return {"Authorization": f"{self.token_type} {self.token}"}


class AuthProvider(ABC):
    """Abstract base class for authentication providers."""

    @abstractmethod
    async def get_token(self) -> AuthToken:
        """Get authentication token."""


class PersonalAccessTokenAuth(AuthProvider):
    """Personal Access Token authentication provider."""

    def __init__(self, token: str):
        """Initialize PAT authentication.

        Args:
            token: GitHub Personal Access Token
        """
        if not token or not token.strip():
            raise GitHubAuthenticationError("Personal Access Token is required")
        self._token = AuthToken(token=token.strip(), token_type="token")  # nosec B106

    async def get_token(self) -> AuthToken:
        """Get authentication token."""
        return self._token


class GitHubAppAuth(AuthProvider):
    """GitHub App authentication provider.

    Authenticates as the App itself with a short-lived RS256 JWT, re-signed
    shortly before the previous one expires.
    """

    JWT_LIFETIME = 600
    REFRESH_MARGIN = 60

    def __init__(self, app_id: str, private_key: str):
        """Initialize GitHub App authentication.

        Args:
            app_id: GitHub App ID
            private_key: PEM private key for JWT signing
        """
        if not app_id or not private_key:
            raise GitHubAuthenticationError(
                "GitHub App authentication requires an app ID and a private key"
            )
        self.app_id = app_id
        self.private_key = private_key
        self._current_token: AuthToken | None = None

    def _generate_jwt(self, now: int) -> str:
        payload = {
            "iat": now - 60,  # Allow for clock drift
            "exp": now + self.JWT_LIFETIME,
            "iss": self.app_id,
        }

        try:
            token = jwt.encode(payload, self.private_key, algorithm="RS256")
        except Exception as e:
            raise GitHubAuthenticationError(f"Failed to generate JWT: {e}") from e
        return token if isinstance(token, str) else token.decode("utf-8")

    async def get_token(self) -> AuthToken:
        """Get authentication token, signing a new JWT when needed."""
        now = int(time.time())
        if (
            self._current_token
            and self._current_token.expires_at is not None
            and now < self._current_token.expires_at - self.REFRESH_MARGIN
        ):
            return self._current_token

        self._current_token = AuthToken(
            token=self._generate_jwt(now),
            token_type="Bearer",  # nosec B106
            expires_at=now + self.JWT_LIFETIME,
        )
        return self._current_token

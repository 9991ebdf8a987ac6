"""
GitHub App Authentication

Exchanges a signed app JWT for short-lived installation tokens. Tokens are
cached and refreshed five minutes before they expire.
"""

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import jwt

from .config import GitHubConfig
from .errors import ConfigurationError, InvalidTokenError, QuotaExceededError, TransientProviderError

logger = logging.getLogger("signalhub.common.github_app")

GITHUB_API_URL = "https://api.github.com"
TOKEN_BUFFER_SECONDS = 5 * 60
# Installation tokens live for an hour; treat them as 55 minutes
TOKEN_LIFETIME_SECONDS = 55 * 60


class GitHubAppAuth:
    """Installation-token provider for one GitHub App installation."""

    def __init__(
        self,
        app_id: str,
        installation_id: str,
        private_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not app_id or not installation_id or not private_key:
            raise ConfigurationError("GitHub App auth needs app_id, installation_id and private_key")
        self.app_id = str(app_id)
        self.installation_id = str(installation_id)
        self._private_key = private_key
        self._http = http_client
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def create_jwt(self) -> str:
        """App JWT signed with RS256, backdated 60s for clock drift"""
        now = int(self._clock())
        payload = {"iat": now - 60, "exp": now + 600, "iss": self.app_id}
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - TOKEN_BUFFER_SECONDS

    async def get_installation_token(self) -> str:
        """Return the cached installation token or fetch a fresh one"""
        if self.has_valid_token:
            return self._token

        url = f"{GITHUB_API_URL}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self.create_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        client = self._http or httpx.AsyncClient(timeout=30.0)
        try:
            response = await client.post(url, headers=headers)
        except httpx.HTTPError as e:
            raise TransientProviderError(f"GitHub App token request failed: {e}") from e
        finally:
            if self._http is None:
                await client.aclose()

        if response.status_code == 401:
            raise InvalidTokenError(f"GitHub App {self.app_id} credentials rejected")
        if response.status_code in (403, 429):
            raise QuotaExceededError(f"GitHub App token request rate limited ({response.status_code})")
        if response.status_code >= 400:
            raise TransientProviderError(
                f"GitHub App token request failed: {response.status_code} {response.text[:200]}"
            )

        self._token = response.json()["token"]
        self._expires_at = self._clock() + TOKEN_LIFETIME_SECONDS
        logger.info("Obtained installation token for installation %s", self.installation_id)
        return self._token

    def clear_cache(self) -> None:
        self._token = None
        self._expires_at = 0.0

    @classmethod
    def from_config(
        cls,
        github: GitHubConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> List["GitHubAppAuth"]:
        """One auth per configured installation; empty when no app is configured"""
        if not github.app_id or not github.installation_ids or not github.private_key_path:
            return []

        key_path = Path(github.private_key_path).expanduser()
        try:
            private_key = key_path.read_text()
        except IOError as e:
            raise ConfigurationError(f"Cannot read GitHub App private key {key_path}: {e}") from e

        return [
            cls(github.app_id, installation_id, private_key, http_client=http_client)
            for installation_id in github.installation_ids
        ]

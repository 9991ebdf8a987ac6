"""
Token Manager

Rotates among GitHub credentials and tracks their remaining quota.

Per-credential state is {remaining, limit, reset_at}. Response headers
are authoritative; before each use, a credential whose reset time has
passed is treated as replenished without waiting for a response.

App installations are always tried first. Personal tokens rotate
round-robin, skipping exhausted ones. When nothing is left the manager
raises NoTokenAvailableError carrying the earliest reset; it never sleeps,
so callers choose whether to wait or abort.

Rotation state is process-local and unsynchronized.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .config import GitHubConfig
from .errors import ConfigurationError, InvalidTokenError, NoTokenAvailableError, SignalHubError
from .github_app import GitHubAppAuth

logger = logging.getLogger("signalhub.common.token_manager")

DEFAULT_RATE_LIMIT = 5000
RESET_WINDOW_SECONDS = 3600


@dataclass
class TokenInfo:
    """A rotatable credential; ``reset_at`` and ``last_used`` are epoch seconds"""
    token: str
    remaining: int = DEFAULT_RATE_LIMIT
    limit: int = DEFAULT_RATE_LIMIT
    reset_at: float = field(default_factory=lambda: time.time() + RESET_WINDOW_SECONDS)
    last_used: float = 0.0
    is_app_token: bool = False
    installation_id: Optional[str] = None
    invalid: bool = False

    def has_available_requests(self, now: float) -> bool:
        """Optimistic check: a passed reset time replenishes the quota"""
        if self.invalid:
            return False
        if now >= self.reset_at:
            self.remaining = self.limit
            self.reset_at = now + RESET_WINDOW_SECONDS
            return True
        return self.remaining > 0


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class TokenManager:
    """
    Credential rotation for outbound GitHub calls.

    Call sites only use ``get_next_available_token`` and
    ``update_from_response``; they do not implement backoff themselves.
    """

    def __init__(
        self,
        tokens: Sequence[str],
        app_auths: Sequence[GitHubAppAuth] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            tokens: Personal access tokens; blanks are ignored
            app_auths: GitHub App installations, tried before tokens
            clock: Time source in epoch seconds

        Raises:
            ConfigurationError: no tokens and no app installations
        """
        self._clock = clock
        now = clock()
        self._tokens: List[TokenInfo] = [
            TokenInfo(token=t.strip(), reset_at=now + RESET_WINDOW_SECONDS)
            for t in tokens
            if t and t.strip()
        ]
        self._app_auths = list(app_auths)
        self._current_index = 0
        self._current_app_index = 0

        if not self._tokens and not self._app_auths:
            raise ConfigurationError("No valid GitHub tokens or GitHub App installations provided")

        logger.info(
            "Initialized with %d token(s) and %d GitHub App installation(s)",
            len(self._tokens), len(self._app_auths),
        )

    @property
    def token_count(self) -> int:
        return len(self._tokens)

    def _find(self, token: str) -> Optional[TokenInfo]:
        for info in self._tokens:
            if info.token == token:
                return info
        return None

    def _track_app_token(self, token: str, installation_id: Optional[str] = None) -> TokenInfo:
        """One entry per installation; a refreshed token replaces the stale one"""
        info = self._find(token)
        if info is not None:
            return info

        info = TokenInfo(
            token=token,
            reset_at=self._clock() + RESET_WINDOW_SECONDS,
            last_used=self._clock(),
            is_app_token=True,
            installation_id=installation_id,
        )
        for i, existing in enumerate(self._tokens):
            if existing.is_app_token and existing.installation_id == installation_id:
                self._tokens[i] = info
                logger.debug("Replaced refreshed token for GitHub App installation %s", installation_id)
                return info
        self._tokens.append(info)
        return info

    async def _next_app_token(self) -> Optional[str]:
        attempts = 0
        while attempts < len(self._app_auths):
            auth = self._app_auths[self._current_app_index]
            try:
                token = await auth.get_installation_token()
            except SignalHubError as e:
                logger.error(
                    "Failed to get token from GitHub App installation %s: %s",
                    auth.installation_id, e,
                )
                self._current_app_index = (self._current_app_index + 1) % len(self._app_auths)
                attempts += 1
                continue

            info = self._track_app_token(token, auth.installation_id)
            if info.has_available_requests(self._clock()):
                return token

            self._current_app_index = (self._current_app_index + 1) % len(self._app_auths)
            attempts += 1
        return None

    async def get_next_available_token(self) -> str:
        """
        Return a credential with quota left, rotating as needed.

        Raises:
            NoTokenAvailableError: every credential is exhausted; ``reset_at``
                is the earliest known reset
            InvalidTokenError: every remaining credential was rejected
        """
        if self._app_auths:
            token = await self._next_app_token()
            if token:
                return token

        now = self._clock()
        attempts = 0
        while attempts < len(self._tokens):
            info = self._tokens[self._current_index]
            if not info.is_app_token and info.has_available_requests(now):
                return info.token

            if not info.is_app_token and not info.invalid:
                logger.warning(
                    "Token %d exhausted (%d remaining, resets in %d min), rotating",
                    self._current_index + 1, info.remaining,
                    max(0, int((info.reset_at - now) // 60)),
                )
            self._current_index = (self._current_index + 1) % len(self._tokens)
            attempts += 1

        if not self._tokens:
            raise NoTokenAvailableError("No GitHub App installation token could be obtained")

        candidates = [t for t in self._tokens if not t.invalid]
        if not candidates:
            raise InvalidTokenError("All configured GitHub credentials were rejected")

        next_reset = min(t.reset_at for t in candidates)
        reset_at = datetime.fromtimestamp(next_reset, tz=timezone.utc)
        logger.error(
            "All tokens exhausted. Next reset in ~%d minutes",
            max(0, int((next_reset - now + 59) // 60)),
        )
        raise NoTokenAvailableError("All GitHub credentials are exhausted", reset_at=reset_at)

    async def get_current_token(self) -> str:
        """Current credential without availability checks (apps first)"""
        if self._app_auths:
            try:
                auth = self._app_auths[self._current_app_index]
                token = await auth.get_installation_token()
                self._track_app_token(token, auth.installation_id)
                return token
            except SignalHubError as e:
                logger.error("GitHub App token failed, falling back to regular tokens: %s", e)

        if self._tokens:
            return self._tokens[self._current_index].token
        raise NoTokenAvailableError("No tokens available")

    def update_from_response(self, headers: Mapping[str, str], token: Optional[str] = None) -> None:
        """
        Record authoritative quota from X-RateLimit-* response headers.

        Args:
            headers: Response headers (case-insensitive lookup)
            token: Credential that made the call; defaults to the current one
        """
        remaining = _header(headers, "X-RateLimit-Remaining")
        limit = _header(headers, "X-RateLimit-Limit")
        reset = _header(headers, "X-RateLimit-Reset")
        if remaining is None or not limit or not reset:
            return

        info = self._find(token) if token else (self._tokens[self._current_index] if self._tokens else None)
        if info is None:
            return

        try:
            parsed = (int(remaining), int(limit), float(reset))
        except ValueError:
            logger.warning(
                "Ignoring malformed rate limit headers: remaining=%r limit=%r reset=%r",
                remaining, limit, reset,
            )
            return

        info.remaining, info.limit, info.reset_at = parsed
        info.last_used = self._clock()
        logger.debug(
            "Token %d/%d: %d/%d remaining",
            self._tokens.index(info) + 1, len(self._tokens), info.remaining, info.limit,
        )

    def mark_invalid(self, token: str) -> None:
        """Take a rejected credential (401) out of rotation"""
        info = self._find(token)
        if info is None:
            return
        info.invalid = True
        if info.is_app_token:
            for auth in self._app_auths:
                auth.clear_cache()
        logger.warning("Credential %d marked invalid", self._tokens.index(info) + 1)

    def rotate(self) -> None:
        """Advance to the next token even if the current one has quota"""
        if self._tokens:
            self._current_index = (self._current_index + 1) % len(self._tokens)

    def add_token(self, token: str) -> None:
        if not token or not token.strip() or self._find(token.strip()) is not None:
            return
        self._tokens.append(TokenInfo(token=token.strip(), reset_at=self._clock() + RESET_WINDOW_SECONDS))
        logger.info("Added new token. Total: %d", len(self._tokens))

    def all_exhausted(self) -> bool:
        now = self._clock()
        return all(not t.has_available_requests(now) for t in self._tokens)

    def status(self) -> List[Dict[str, object]]:
        """Per-credential quota without exposing the secrets"""
        now = self._clock()
        return [
            {
                "index": i + 1,
                "remaining": t.remaining,
                "limit": t.limit,
                "reset_in_minutes": max(0, int((t.reset_at - now + 59) // 60)),
                "is_app_token": t.is_app_token,
                "invalid": t.invalid,
            }
            for i, t in enumerate(self._tokens)
        ]

    @classmethod
    def from_config(cls, github: GitHubConfig) -> Optional["TokenManager"]:
        """Build from config; None when no credentials are configured"""
        app_auths = GitHubAppAuth.from_config(github)
        if not github.tokens and not app_auths:
            return None
        return cls(github.tokens, app_auths)


def rate_limit_wait_seconds(headers: Mapping[str, str], is_search: bool = False, now: Optional[float] = None) -> float:
    """
    Seconds a caller should wait after a rate-limited response.

    Uses Retry-After, then X-RateLimit-Reset, then a default of 60s for
    the search API and 300s otherwise. The manager itself never waits.
    """
    retry_after = _header(headers, "Retry-After")
    if retry_after:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass

    reset = _header(headers, "X-RateLimit-Reset")
    if reset:
        current = time.time() if now is None else now
        try:
            return max(0.0, float(reset) - current)
        except ValueError:
            logger.warning("Ignoring malformed X-RateLimit-Reset header: %r", reset)

    return 60.0 if is_search else 300.0

"""Tests for credential rotation and quota tracking."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from signalhub.common.errors import (
    ConfigurationError,
    InvalidTokenError,
    NoTokenAvailableError,
    QuotaExceededError,
)
from signalhub.common.token_manager import TokenInfo, TokenManager, rate_limit_wait_seconds


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def headers(remaining, limit=5000, reset=2_000_000):
    return {"X-RateLimit-Remaining": str(remaining), "X-RateLimit-Limit": str(limit), "X-RateLimit-Reset": str(reset)}


def app_auth(token="app-token", error=None):
    auth = MagicMock()
    auth.installation_id = "inst-1"
    auth.get_installation_token = AsyncMock(return_value=token, side_effect=error)
    return auth


class TestTokenInfo:
    def test_optimistic_reset(self):
        info = TokenInfo(token="t", remaining=0, limit=5000, reset_at=100.0)
        assert info.has_available_requests(50.0) is False
        assert info.has_available_requests(100.0) is True
        assert info.remaining == 5000
        assert info.reset_at == 100.0 + 3600

    def test_invalid_never_available(self):
        info = TokenInfo(token="t", reset_at=0.0, invalid=True)
        assert info.has_available_requests(10.0) is False


class TestTokenManager:
    def test_zero_credentials_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            TokenManager(["", "  "])

    @pytest.mark.asyncio
    async def test_rotates_past_exhausted_token(self):
        clock = FakeClock()
        manager = TokenManager(["a", "b"], clock=clock)
        manager.update_from_response(headers(0, reset=clock.now + 600), token="a")

        assert await manager.get_next_available_token() == "b"

    @pytest.mark.asyncio
    async def test_all_exhausted_reports_earliest_reset(self):
        clock = FakeClock()
        manager = TokenManager(["a", "b"], clock=clock)
        manager.update_from_response(headers(0, reset=clock.now + 900), token="a")
        manager.update_from_response(headers(0, reset=clock.now + 300), token="b")

        with pytest.raises(NoTokenAvailableError) as exc_info:
            await manager.get_next_available_token()

        assert exc_info.value.reset_at.timestamp() == pytest.approx(clock.now + 300)
        assert isinstance(exc_info.value, QuotaExceededError)
        assert manager.all_exhausted()

    @pytest.mark.asyncio
    async def test_liveness_after_reset_passes(self):
        clock = FakeClock()
        manager = TokenManager(["a", "b", "c"], clock=clock)
        for token in ("a", "b", "c"):
            manager.update_from_response(headers(0, reset=clock.now + 60), token=token)

        clock.now += 61
        assert not manager.all_exhausted()
        assert await manager.get_next_available_token() == "a"

    @pytest.mark.asyncio
    async def test_invalid_tokens_distinct_from_exhaustion(self):
        manager = TokenManager(["a", "b"], clock=FakeClock())
        manager.mark_invalid("a")
        manager.mark_invalid("b")

        with pytest.raises(InvalidTokenError):
            await manager.get_next_available_token()

    @pytest.mark.asyncio
    async def test_app_tokens_tried_first(self):
        auth = app_auth("app-token")
        manager = TokenManager(["pat"], app_auths=[auth], clock=FakeClock())

        assert await manager.get_next_available_token() == "app-token"
        assert manager.status()[-1]["is_app_token"] is True

    @pytest.mark.asyncio
    async def test_refreshed_app_token_replaces_stale_entry(self):
        auth = app_auth()
        auth.get_installation_token = AsyncMock(side_effect=["app-token-1", "app-token-2", "app-token-3"])
        manager = TokenManager(["pat"], app_auths=[auth], clock=FakeClock())

        assert await manager.get_next_available_token() == "app-token-1"
        manager.update_from_response(headers(0), token="app-token-1")
        assert await manager.get_next_available_token() == "app-token-2"
        assert await manager.get_current_token() == "app-token-3"

        assert manager.token_count == 2
        app_entries = [s for s in manager.status() if s["is_app_token"]]
        assert len(app_entries) == 1
        assert app_entries[0]["remaining"] == 5000
        assert not manager.all_exhausted()

    @pytest.mark.asyncio
    async def test_failing_app_falls_back_to_tokens(self):
        auth = app_auth(error=InvalidTokenError("bad key"))
        manager = TokenManager(["pat"], app_auths=[auth], clock=FakeClock())

        assert await manager.get_next_available_token() == "pat"

    @pytest.mark.asyncio
    async def test_apps_only_failure_is_no_token(self):
        auth = app_auth(error=QuotaExceededError("limited"))
        manager = TokenManager([], app_auths=[auth], clock=FakeClock())

        with pytest.raises(NoTokenAvailableError):
            await manager.get_next_available_token()

    def test_update_from_response_is_case_insensitive(self):
        manager = TokenManager(["a"], clock=FakeClock())
        manager.update_from_response({"x-ratelimit-remaining": "42", "x-ratelimit-limit": "60", "x-ratelimit-reset": "123"})

        status = manager.status()[0]
        assert status["remaining"] == 42
        assert status["limit"] == 60

    def test_update_ignores_partial_headers(self):
        manager = TokenManager(["a"], clock=FakeClock())
        manager.update_from_response({"X-RateLimit-Remaining": "0"})
        assert manager.status()[0]["remaining"] == 5000

    def test_update_skips_malformed_headers(self, caplog):
        manager = TokenManager(["a"], clock=FakeClock())
        before = manager.status()[0]

        manager.update_from_response({"X-RateLimit-Remaining": "abc", "X-RateLimit-Limit": "5000", "X-RateLimit-Reset": "123"})
        manager.update_from_response(headers(10, reset="soon"))

        assert manager.status()[0] == before
        assert "malformed rate limit headers" in caplog.text

    def test_status_hides_secrets(self):
        manager = TokenManager(["ghp_secret"], clock=FakeClock())
        assert "ghp_secret" not in str(manager.status())

    @pytest.mark.asyncio
    async def test_rotate_and_add_token(self):
        manager = TokenManager(["a"], clock=FakeClock())
        manager.add_token("b")
        manager.add_token("b")
        assert manager.token_count == 2
        manager.rotate()
        assert await manager.get_current_token() == "b"


class TestRateLimitWait:
    def test_retry_after_wins(self):
        assert rate_limit_wait_seconds({"Retry-After": "17"}) == 17.0

    def test_reset_header(self):
        assert rate_limit_wait_seconds({"X-RateLimit-Reset": "1100"}, now=1000.0) == 100.0

    def test_malformed_reset_uses_default(self):
        assert rate_limit_wait_seconds({"X-RateLimit-Reset": "later"}, now=1000.0) == 300.0

    def test_defaults(self):
        assert rate_limit_wait_seconds({}, is_search=True) == 60.0
        assert rate_limit_wait_seconds({}) == 300.0


class TestGitHubAppAuth:
    @pytest.mark.asyncio
    async def test_token_cached_until_buffer(self):
        from signalhub.common.github_app import GitHubAppAuth

        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(201, json={"token": f"inst-{len(calls)}"})

        clock = FakeClock()
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        auth = GitHubAppAuth("1", "99", "unused-key", http_client=client, clock=clock)
        auth.create_jwt = lambda: "app-jwt"

        assert await auth.get_installation_token() == "inst-1"
        assert await auth.get_installation_token() == "inst-1"
        assert calls[0].headers["Authorization"] == "Bearer app-jwt"

        clock.now += 51 * 60
        assert await auth.get_installation_token() == "inst-2"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        from signalhub.common.github_app import GitHubAppAuth

        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        auth = GitHubAppAuth("1", "99", "unused-key", http_client=client)
        auth.create_jwt = lambda: "app-jwt"

        with pytest.raises(InvalidTokenError):
            await auth.get_installation_token()
        await client.aclose()

    def test_missing_fields(self):
        from signalhub.common.github_app import GitHubAppAuth

        with pytest.raises(ConfigurationError):
            GitHubAppAuth("", "99", "key")

"""
Tests for configuration, logging setup and the shared helpers.
"""

import asyncio
import logging

from utilitysign.common.identifiers import build_idempotency_key, generate_correlation_id
from utilitysign.common.tasks import fire_and_forget, invoke_callback
from utilitysign.config import Settings, settings
from utilitysign.logging_setup import configure_logging


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestSettings:
    """Settings read from UTILITYSIGN_ environment variables."""

    def test_environment_overrides(self):
        """Environment variables set by the test suite are picked up."""
        assert settings.environment == "test"
        assert settings.rest_nonce == "test-nonce"

    def test_bankid_defaults(self, monkeypatch):
        """BankID timers default to 2 s polling and a 300 s timeout."""
        monkeypatch.delenv("UTILITYSIGN_BANKID_POLL_INTERVAL_SECONDS", raising=False)
        monkeypatch.delenv("UTILITYSIGN_BANKID_POLL_TIMEOUT_SECONDS", raising=False)
        fresh = Settings(_env_file=None)
        assert fresh.bankid_poll_interval_seconds == 2.0
        assert fresh.bankid_poll_timeout_seconds == 300.0
        assert fresh.bankid_window_name == "bankid-auth"

    def test_list_setting_from_env(self, monkeypatch):
        """List settings are parsed from JSON in the environment."""
        monkeypatch.setenv("UTILITYSIGN_BUSINESS_PRODUCT_IDS", '["a", "b"]')
        assert Settings(_env_file=None).business_product_ids == ["a", "b"]


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class TestLogging:
    """Package logger setup."""

    def test_single_handler(self):
        """Configuring twice attaches only one handler."""
        configure_logging()
        configure_logging()
        logger = logging.getLogger("utilitysign")
        marked = [h for h in logger.handlers if getattr(h, "_utilitysign", False)]
        assert len(marked) == 1

    def test_explicit_level(self):
        """An explicit level overrides the configured one."""
        configure_logging("WARNING")
        assert logging.getLogger("utilitysign").level == logging.WARNING
        configure_logging("INFO")


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

class TestIdentifiers:
    """Correlation ids and idempotency keys."""

    def test_correlation_id_prefix(self):
        """Correlation ids carry their prefix."""
        assert generate_correlation_id().startswith("wp-")
        assert generate_correlation_id("bankid").startswith("bankid-")

    def test_idempotency_keys_are_unique(self):
        """Keys built in the same millisecond still differ."""
        keys = {build_idempotency_key("doc-1", "jo@example.com") for _ in range(50)}
        assert len(keys) == 50
        assert all(k.startswith("signing-doc-1-jo@example.com-") for k in keys)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------

class TestTasks:
    """Best-effort background work and callback invocation."""

    async def test_result_is_returned(self):
        """A successful task yields its result."""
        async def work():
            return 42

        assert await fire_and_forget(work(), "answer") == 42

    async def test_failure_is_logged_not_raised(self, caplog):
        """A failing task logs the error and yields None."""
        async def work():
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            assert await fire_and_forget(work(), "exploding work") is None
        assert "Background task failed: exploding work" in caplog.text

    async def test_cancellation_propagates(self):
        """Cancelling a background task is not swallowed."""
        task = fire_and_forget(asyncio.sleep(10), "sleeper")
        await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        assert task.cancelled()

    async def test_invoke_callback(self):
        """Sync and async callbacks are both called, and None is skipped."""
        async def async_cb(value):
            return value * 2

        assert await invoke_callback(None) is None
        assert await invoke_callback(lambda v: v + 1, 1) == 2
        assert await invoke_callback(async_cb, 2) == 4

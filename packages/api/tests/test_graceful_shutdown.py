"""Tests for graceful shutdown functionality."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from pimflow_api import main
from pimflow_api.main import app, cleanup_resources, get_shutdown_timeout


class TestShutdownConfiguration:
    """Tests for shutdown configuration."""

    def test_get_shutdown_timeout_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that shutdown timeout defaults to 30 seconds."""
        monkeypatch.delenv("SHUTDOWN_TIMEOUT_SECONDS", raising=False)
        assert get_shutdown_timeout() == 30

    def test_get_shutdown_timeout_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that shutdown timeout can be configured via environment variable."""
        monkeypatch.setenv("SHUTDOWN_TIMEOUT_SECONDS", "60")
        assert get_shutdown_timeout() == 60


class TestCleanupResources:
    """Tests for resource cleanup during shutdown."""

    @pytest.mark.asyncio
    async def test_cleanup_closes_engine(self) -> None:
        """Test that cleanup stops the engine's background tasks."""
        engine = MagicMock()
        engine.close = AsyncMock()

        with patch.object(main, "get_engine", return_value=engine):
            await cleanup_resources()

        engine.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_cleanup_handles_errors_gracefully(self) -> None:
        """Test that a failing close is logged, not raised."""
        engine = MagicMock()
        engine.close = AsyncMock(side_effect=RuntimeError("verification task stuck"))

        with patch.object(main, "get_engine", return_value=engine):
            await cleanup_resources()

        engine.close.assert_called_once()


class TestLifespanEvents:
    """Tests for FastAPI lifespan events."""

    def test_app_has_lifespan(self) -> None:
        """Test that the FastAPI app has lifespan configured."""
        assert app.router.lifespan_context is not None

    def test_lifespan_starts_and_closes_engine(self) -> None:
        """Test that startup starts the engine and shutdown closes it."""
        engine = MagicMock()
        engine.start = AsyncMock()
        engine.close = AsyncMock()

        with patch.object(main, "get_engine", return_value=engine):
            with TestClient(app) as client:
                assert client.app is not None
                engine.start.assert_called_once()
                engine.close.assert_not_called()

        engine.close.assert_called_once()

    def test_lifespan_shutdown_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a slow cleanup is abandoned after the timeout."""
        monkeypatch.setenv("SHUTDOWN_TIMEOUT_SECONDS", "0")
        engine = MagicMock()
        engine.start = AsyncMock()
        finished = []

        async def slow_cleanup() -> None:
            await asyncio.sleep(1)
            finished.append(True)

        with patch.object(main, "get_engine", return_value=engine), patch.object(
            main, "cleanup_resources", slow_cleanup
        ):
            with TestClient(app):
                pass

        assert finished == []


class TestUvicornConfiguration:
    """Tests for uvicorn graceful shutdown configuration."""

    def test_run_script_reads_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that run script passes host, port and timeout to uvicorn."""
        from pimflow_api import run

        monkeypatch.setenv("PIMFLOW_API_HOST", "127.0.0.1")
        monkeypatch.setenv("PIMFLOW_API_PORT", "9000")
        monkeypatch.setenv("SHUTDOWN_TIMEOUT_SECONDS", "60")

        with patch.object(run.uvicorn, "Server") as server:
            run.main()

        config = server.call_args.args[0]
        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.timeout_graceful_shutdown == 60
        server.return_value.run.assert_called_once()

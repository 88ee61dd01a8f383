"""Tests for logging setup and job context binding."""

import asyncio
import logging
from logging.handlers import RotatingFileHandler

import pytest
import structlog

from postbridge.config import get_settings
from postbridge.logging import job_context, setup_logging


class TestJobContext:
    def test_binds_and_clears_ids(self) -> None:
        with job_context("job-1", "item-1", "dest-1"):
            assert structlog.contextvars.get_contextvars() == {
                "job_id": "job-1",
                "content_item_id": "item-1",
                "destination_id": "dest-1",
            }
        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_events_carry_job_ids(self) -> None:
        capture = structlog.testing.LogCapture()
        log = structlog.wrap_logger(
            None, processors=[structlog.contextvars.merge_contextvars, capture]
        )
        with job_context("job-1", "item-1", "dest-1"):
            log.info("publish_started")
        log.info("idle")
        logs = capture.entries
        assert logs[0]["job_id"] == "job-1"
        assert logs[0]["destination_id"] == "dest-1"
        assert "job_id" not in logs[1]

    @pytest.mark.asyncio
    async def test_tasks_keep_their_own_job(self) -> None:
        async def attempt(job_id: str) -> str:
            with job_context(job_id, "item-1", "dest-1"):
                await asyncio.sleep(0)
                return structlog.contextvars.get_contextvars()["job_id"]

        assert await asyncio.gather(attempt("job-1"), attempt("job-2")) == ["job-1", "job-2"]


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def _restore(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)
        structlog.reset_defaults()
        get_settings.cache_clear()

    def test_file_logging(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("LOG_TO_FILE", "true")
        monkeypatch.setenv("LOG_DIRECTORY", str(tmp_path / "logs"))
        monkeypatch.setenv("LOG_LEVEL", "debug")
        get_settings.cache_clear()

        setup_logging()

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert (tmp_path / "logs").is_dir()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_console_only_by_default(self, monkeypatch) -> None:
        monkeypatch.setenv("LOG_TO_FILE", "false")
        get_settings.cache_clear()

        setup_logging()

        assert not any(isinstance(h, RotatingFileHandler) for h in logging.getLogger().handlers)

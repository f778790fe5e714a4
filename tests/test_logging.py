"""
Tests for log setup, command tagging and the in-memory log buffer.
"""

from collections.abc import Generator

import pytest

from resilient_todo.logging import (
    clear_in_memory_logs,
    command_context,
    current_command_id,
    get_in_memory_logs,
    get_logger,
    setup_logging,
)

logger = get_logger("tests.logging")


@pytest.fixture
def debug_logging() -> Generator[None, None, None]:
    setup_logging("DEBUG")
    clear_in_memory_logs()
    yield
    clear_in_memory_logs()
    setup_logging("INFO")


class TestCommandContext:
    """Records logged while a command is applied carry its id."""

    def test_record_tagged_inside_block(self, debug_logging: None) -> None:
        with command_context("cmd-1"):
            logger.info("applying")
        logger.info("idle")

        logs = get_in_memory_logs("DEBUG")
        assert [(log["message"], log["command_id"]) for log in logs] == [
            ("applying", "cmd-1"),
            ("idle", None),
        ]

    def test_context_restored_after_error(self) -> None:
        with pytest.raises(RuntimeError):
            with command_context("cmd-2"):
                raise RuntimeError("boom")
        assert current_command_id.get() is None

    def test_nested_blocks(self) -> None:
        with command_context("outer"):
            with command_context("inner"):
                assert current_command_id.get() == "inner"
            assert current_command_id.get() == "outer"


class TestInMemoryLogs:
    """Buffered log view."""

    def test_level_filter(self, debug_logging: None) -> None:
        logger.debug("detail")
        logger.warning("careful")

        assert [log["message"] for log in get_in_memory_logs("WARNING")] == ["careful"]
        assert len(get_in_memory_logs("DEBUG")) == 2

    def test_limit_keeps_newest(self, debug_logging: None) -> None:
        for i in range(5):
            logger.info("line %d", i)

        logs = get_in_memory_logs("INFO", limit=2)
        assert [log["message"] for log in logs] == ["line 3", "line 4"]

    def test_record_fields(self, debug_logging: None) -> None:
        logger.error("failed")

        (log,) = get_in_memory_logs("ERROR")
        assert log["level"] == "ERROR"
        assert log["logger"] == "tests.logging"
        assert log["timestamp"] is not None

    def test_clear(self, debug_logging: None) -> None:
        logger.info("x")
        clear_in_memory_logs()
        assert get_in_memory_logs("DEBUG") == []

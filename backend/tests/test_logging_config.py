"""Tests for logging_config.py."""

from __future__ import annotations

import logging
import sys

import pytest

from logging_config import (
    FILE_HANDLER,
    STREAM_HANDLER,
    ContextFilter,
    ContextFormatter,
    is_chatbot_handler,
    request_id_var,
    room_id_var,
    setup_logging,
)


@pytest.fixture
def root():
    """Root logger stripped of our handlers; restored afterwards."""
    logger = logging.getLogger()
    saved, level = list(logger.handlers), logger.level
    logger.handlers = [h for h in saved if not is_chatbot_handler(h)]
    yield logger
    for handler in logger.handlers:
        if is_chatbot_handler(handler):
            handler.close()
    logger.handlers = saved
    logger.setLevel(level)


def _record(msg="hello", exc_info=None, **context):
    record = logging.LogRecord("services.chat", logging.INFO, "", 48, msg, (), exc_info)
    record.role = context.get("role", "Server")
    record.request_id = context.get("request_id", "")
    record.room_id = context.get("room_id", "")
    return record


def test_unnamed_handlers_are_not_ours():
    assert is_chatbot_handler(logging.NullHandler()) is False
    handler = logging.NullHandler()
    handler.name = STREAM_HANDLER
    assert is_chatbot_handler(handler) is True


class TestContextFilter:
    def test_defaults_are_empty(self):
        record = logging.LogRecord("x", logging.INFO, "", 0, "msg", (), None)
        assert ContextFilter("Server").filter(record) is True
        assert (record.role, record.request_id, record.room_id) == ("Server", "", "")

    def test_reads_current_ids(self):
        req, room = request_id_var.set("req_abc"), room_id_var.set("room_1")
        try:
            record = logging.LogRecord("x", logging.INFO, "", 0, "msg", (), None)
            ContextFilter("Server").filter(record)
        finally:
            room_id_var.reset(room)
            request_id_var.reset(req)
        assert record.request_id == "req_abc"
        assert record.room_id == "room_1"


class TestContextFormatter:
    def test_bare_prefix(self):
        line = ContextFormatter().format(_record())
        assert "[Server][INFO] services.chat:48 - hello" in line
        assert "[Req" not in line and "[Room" not in line

    def test_request_and_room_tags(self):
        line = ContextFormatter().format(_record(request_id="req_1a2b", room_id="room_x"))
        assert "[Server][Req req_1a2b][Room room_x][INFO]" in line

    def test_traceback_follows_message(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("failed", exc_info=sys.exc_info())
        assert ContextFormatter().format(record).splitlines()[-1] == "ValueError: boom"


class TestSetupLogging:
    def test_second_call_is_noop(self, root):
        setup_logging("Server")
        setup_logging("Server")
        assert [h.name for h in root.handlers if is_chatbot_handler(h)] == [STREAM_HANDLER]

    def test_log_file_adds_rotating_handler(self, root, tmp_path, monkeypatch):
        from config import settings

        log_file = tmp_path / "logs" / "server.log"
        monkeypatch.setattr(settings, "LOG_FILE", str(log_file))
        setup_logging("Server")
        assert {h.name for h in root.handlers if is_chatbot_handler(h)} == {STREAM_HANDLER, FILE_HANDLER}
        assert log_file.parent.is_dir()

    def test_uvicorn_propagates_to_root(self, root):
        uv = logging.getLogger("uvicorn.access")
        uv.addHandler(logging.NullHandler())
        setup_logging("Server")
        assert uv.handlers == []
        assert uv.propagate is True

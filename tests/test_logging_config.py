"""
test_logging_config.py - Tests for decision-scoped structured logging.
"""

import json
import logging

import pytest

from fakes import TOKEN
from tradegate.logging_config import DecisionContext, JSONFormatter, get_decision_id, setup_logging
from tradegate.orchestrator import TradeDirection, TradeIntent


def _record(message="hello") -> logging.LogRecord:
    return logging.LogRecord("tradegate.test", logging.INFO, __file__, 1, message, None, None)


class TestDecisionContext:
    def test_sets_and_resets(self):
        assert get_decision_id() is None
        with DecisionContext(asset=TOKEN) as ctx:
            assert get_decision_id() == ctx.decision_id
            assert len(ctx.decision_id) == 12
        assert get_decision_id() is None

    def test_explicit_id(self):
        with DecisionContext(decision_id="abc123"):
            assert get_decision_id() == "abc123"

    def test_json_formatter_includes_context(self):
        with DecisionContext(decision_id="abc123", asset=TOKEN):
            data = json.loads(JSONFormatter().format(_record()))
        assert data["decision_id"] == "abc123"
        assert data["asset"] == TOKEN
        assert data["message"] == "hello"
        assert data["level"] == "INFO"

    def test_json_formatter_without_context(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert "decision_id" not in data

    @pytest.mark.asyncio
    async def test_decide_logs_carry_decision_id(self, orchestrator, caplog):
        caplog.set_level(logging.INFO, logger="tradegate")
        seen = []

        class Capture(logging.Handler):
            def emit(self, record):
                seen.append(get_decision_id())

        handler = Capture()
        logging.getLogger("tradegate").addHandler(handler)
        try:
            result = await orchestrator.decide(TradeIntent(TradeDirection.BUY, TOKEN, 0.1, "test"))
        finally:
            logging.getLogger("tradegate").removeHandler(handler)

        assert seen
        assert result.decision_id in seen


class TestSetupLogging:
    def test_json_file_output(self, temp_dir):
        log_file = temp_dir / "logs" / "tradegate.log"
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging("DEBUG", json_format=True, log_file=log_file)
            logging.getLogger("tradegate.test").info("written")
            for handler in root.handlers:
                handler.flush()
            lines = log_file.read_text().strip().splitlines()
            assert json.loads(lines[-1])["message"] == "written"
            assert logging.getLogger("aiohttp").level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
            logging.getLogger("aiohttp").setLevel(logging.NOTSET)

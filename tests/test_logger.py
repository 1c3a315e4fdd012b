import json
import sys

from ujds.logger import new_logger


class _Terminal:
    def isatty(self):
        return True

    def write(self, data):
        return len(data)

    def flush(self):
        pass


def test_json_output_when_not_terminal(capsys):
    logger = new_logger("ujds.test.json")
    logger.info("hello")
    err = capsys.readouterr().err.strip()
    entry = json.loads(err)
    assert entry["message"] == "hello"
    assert entry["level"] == "info"


def test_console_output_when_terminal(capsys, monkeypatch):
    monkeypatch.setattr(sys, "stdout", _Terminal())
    logger = new_logger("ujds.test.console")
    logger.warning("careful")
    err = capsys.readouterr().err.strip()
    assert err.endswith("WRN careful")


def test_repeated_calls_do_not_duplicate_handlers(capsys):
    new_logger("ujds.test.repeat")
    logger = new_logger("ujds.test.repeat")
    assert len(logger.handlers) == 1
    logger.error("once")
    lines = capsys.readouterr().err.strip().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["message"] == "once"
import json
import logging

from circuitwatch.utils.logging_utils import set_cycle, setup_logging


def test_file_handler_uses_full_format(tmp_path, restore_root_logging):
    log_file = tmp_path / "logs" / "cw.log"
    root = setup_logging("debug", str(log_file))
    assert root.level == logging.DEBUG
    set_cycle(7)
    logging.getLogger("circuitwatch.test").info("cycle_complete status=ok")
    set_cycle(None)
    for h in root.handlers:
        h.flush()
    text = log_file.read_text(encoding="utf-8")
    assert "[cycle=7] cycle_complete status=ok" in text
    assert "circuitwatch.test" in text
    assert logging.getLogger("kiteconnect").level == logging.WARNING


def test_json_console(monkeypatch, capsys, restore_root_logging):
    monkeypatch.setenv("CW_JSON_LOGS", "1")
    setup_logging("INFO")
    logging.getLogger("circuitwatch.test").warning("batch_failed batch=2")
    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["level"] == "WARNING"
    assert payload["msg"] == "batch_failed batch=2"
    assert payload["cycle"] == "-"

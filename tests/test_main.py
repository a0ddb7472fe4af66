import datetime as dt
import io
import json
from decimal import Decimal

from circuitwatch.config.settings import TrackerSettings
from circuitwatch.domain.models import ChangeEvent, Severity
from circuitwatch.main import apply_cli_overrides, main, parse_arguments, print_report
from circuitwatch.orchestrator.bootstrap import build_context
from circuitwatch.storage.csv_store import CsvChangeStore
from tests._helpers import make_instrument


def _recent_event(token, severity, underlying="NIFTY"):
    return ChangeEvent(
        instrument=make_instrument(token, underlying=underlying),
        previous_lower=Decimal("100"), previous_upper=Decimal("200"),
        new_lower=Decimal("100"), new_upper=Decimal("240"),
        lower_change_pct=Decimal("0.00"), upper_change_pct=Decimal("20.00"),
        range_change_pct=Decimal("40.00"), severity=severity,
        detected_at=dt.datetime.now(dt.UTC), last_price=Decimal("150"),
    )


def test_cli_overrides():
    settings = TrackerSettings()
    args = parse_arguments(["--once", "--force-open", "--data-dir", "/tmp/x", "--log-level", "DEBUG"])
    out = apply_cli_overrides(settings, args)
    assert out.max_cycles == 1
    assert out.force_market_open is True
    assert out.data_dir == "/tmp/x"
    assert out.log_level == "DEBUG"
    assert apply_cli_overrides(settings, parse_arguments([])) is settings
    assert apply_cli_overrides(settings, parse_arguments(["--max-cycles", "4"])).max_cycles == 4


def test_reports_from_stored_history(tmp_path):
    store = CsvChangeStore(tmp_path)
    store.persist_change_event(_recent_event(1, Severity.CRITICAL))
    store.persist_change_event(_recent_event(2, Severity.LOW, underlying="BANKNIFTY"))
    settings = TrackerSettings(data_dir=str(tmp_path))

    out = io.StringIO()
    assert print_report(settings, parse_arguments(["--report", "today", "--underlying", "banknifty"]), out) == 0
    assert "BANKNIFTY" in out.getvalue() and "[Low]" in out.getvalue()

    out = io.StringIO()
    print_report(settings, parse_arguments(["--report", "critical"]), out)
    lines = out.getvalue().splitlines()
    assert len(lines) == 1 and "[Critical]" in lines[0]

    out = io.StringIO()
    print_report(settings, parse_arguments(["--report", "stats", "--underlying", "NIFTY"]), out)
    assert out.getvalue().startswith("NIFTY: total=1 lower=0 upper=1 both=0")
    assert "Critical=1" in out.getvalue()


def test_empty_report(tmp_path):
    out = io.StringIO()
    print_report(TrackerSettings(data_dir=str(tmp_path)), parse_arguments(["--report", "critical"]), out)
    assert out.getvalue() == "no changes\n"


def test_bad_config_exits_with_code_2(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.json")]) == 2
    assert "configuration error" in capsys.readouterr().err


def test_single_cycle_without_credentials(tmp_path, monkeypatch, restore_root_logging):
    monkeypatch.setattr("circuitwatch.main.setup_signal_handling", lambda shutdown: None)
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"storage": {"data_dir": str(tmp_path / "data")}}), encoding="utf-8")
    assert main(["--config", str(cfg), "--once", "--force-open"]) == 0
    assert (tmp_path / "data" / "state.json").exists() is False


def test_build_context_warm_starts_state(tmp_path):
    from circuitwatch.domain.models import CircuitState

    store = CsvChangeStore(tmp_path)
    state = CircuitState(Decimal("100"), Decimal("200"), Decimal("150"), dt.datetime.now(dt.UTC))
    store.save_state({42: state})
    settings = TrackerSettings(data_dir=str(tmp_path))
    ctx = build_context(settings, env={"KITE_API_KEY": "k", "KITE_ACCESS_TOKEN": "t"}, start_metrics=False)
    assert 42 in ctx.state
    assert ctx.session.has_credential()
    assert [s.name for s in ctx.sinks] == ["log", "csv_export"]

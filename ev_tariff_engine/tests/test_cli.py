import json

import pytest

from ev_tariff_engine import cli
from ev_tariff_engine.utils.trace import read_trace

TARIFFS_YAML = """
- id: t1
  name: Downtown
  currency: EUR
  base_price: 5
  price_per_kwh: 10
  price_per_session: 2
  tax_percentage: 18
  status: active
  time_restrictions:
    - {id: 1, day_of_week: friday, start_time: "18:00", end_time: "22:00", multiplier: 1.5}
"""

SESSIONS = [
    {"session_id": "a", "rate_table_id": "t1", "start_datetime": "2024-03-04T10:00:00",
     "end_datetime": "2024-03-04T11:00:00", "energy_kwh": 10},
    {"session_id": "b", "rate_table_id": "t1", "start_datetime": "2024-03-01T19:00:00",
     "end_datetime": "2024-03-01T20:00:00", "energy_kwh": 5},
]


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "RUNS_DIR", str(tmp_path / "runs"))
    (tmp_path / "tariffs.yaml").write_text(TARIFFS_YAML, encoding="utf-8")
    return tmp_path


def _write_sessions(path, rows):
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


def test_price_then_invoice(workspace):
    sessions = _write_sessions(workspace / "sessions.json", SESSIONS)

    cli.main(["price", "--tariffs", str(workspace / "tariffs.yaml"), "--sessions", str(sessions), "--output-prefix", "r1"])

    run_dir = workspace / "runs" / "r1"
    priced = json.loads((run_dir / "priced_sessions.json").read_text(encoding="utf-8"))
    assert sorted(priced) == ["a", "b"]
    assert priced["a"]["total"] == "126.26"
    assert priced["b"]["total"] == "96.76"
    assert json.loads((run_dir / "failures.json").read_text(encoding="utf-8")) == []
    assert "## Priced sessions" in (run_dir / "report.md").read_text(encoding="utf-8")
    metadata = json.loads((run_dir / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["cli_args"]["command"] == "price"
    phases = [e["phase"] for e in read_trace(run_dir / "trace.jsonl")]
    assert phases[:2] == ["setup", "inputs_loaded"]
    assert phases.count("session_priced") == 2

    cli.main(
        [
            "invoice",
            "--priced", str(run_dir / "priced_sessions.json"),
            "--invoice-number", "INV-1",
            "--session", "a",
            "--output-prefix", "r2",
        ]
    )

    invoice = json.loads((workspace / "runs" / "r2" / "invoice.json").read_text(encoding="utf-8"))
    assert invoice["status"] == "draft"
    assert [i["session_id"] for i in invoice["items"]] == ["a"]
    assert invoice["totals"]["total"] == "126.26"
    assert (workspace / "runs" / "r2" / "invoice.md").exists()


def test_failed_sessions_do_not_abort_the_run(workspace):
    rows = SESSIONS + [dict(SESSIONS[0], session_id="c", rate_table_id="missing")]
    sessions = _write_sessions(workspace / "sessions.json", rows)

    cli.main(["price", "--tariffs", str(workspace / "tariffs.yaml"), "--sessions", str(sessions), "--output-prefix", "r3"])

    failures = json.loads((workspace / "runs" / "r3" / "failures.json").read_text(encoding="utf-8"))
    assert [f["session_id"] for f in failures] == ["c"]
    assert failures[0]["retryable"] is True


def test_fail_on_errors_exits_with_code_two(workspace):
    rows = [dict(SESSIONS[0], rate_table_id="missing")]
    sessions = _write_sessions(workspace / "sessions.json", rows)

    with pytest.raises(SystemExit) as exc:
        cli.main(
            [
                "price",
                "--tariffs", str(workspace / "tariffs.yaml"),
                "--sessions", str(sessions),
                "--output-prefix", "r4",
                "--fail-on-errors",
            ]
        )

    assert exc.value.code == 2


def test_invalid_input_exits_with_code_one(workspace):
    bad = workspace / "bad.yaml"
    bad.write_text("- id: t1\n  currency: EUR\n  price_per_kwh: -1\n", encoding="utf-8")
    sessions = _write_sessions(workspace / "sessions.json", SESSIONS)

    with pytest.raises(SystemExit) as exc:
        cli.main(["price", "--tariffs", str(bad), "--sessions", str(sessions), "--output-prefix", "r5"])

    assert exc.value.code == 1

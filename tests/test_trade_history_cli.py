import json
import subprocess
import sys
from pathlib import Path


def run_cli(db_path, args, user="u1"):
    cmd = [sys.executable, "scripts/trade_history.py", "--db", str(db_path), "--user", user] + args
    res = subprocess.run(cmd, capture_output=True, text=True)
    return res.returncode, res.stdout, res.stderr


def _write(tmp_path: Path, name, **fields):
    path = tmp_path / name
    path.write_text(json.dumps(fields))
    return path


def test_add_list_and_report(tmp_path: Path):
    db = tmp_path / "journal.db"
    option = _write(
        tmp_path, "spy.json",
        symbol="spy", asset_type="OPTION", direction="SHORT", quantity=2,
        entry_price="3.10", exit_price="1.10", fees="4.00",
        option_type="PUT", strike_price="500", expiry_date="2024-06-21",
        opened_at="2024-06-03", closed_at="2024-06-03",
    )
    code, out, err = run_cli(db, ["add", str(option)])
    assert code == 0, err
    assert "SPY realized P&L 396.00 USD" in out

    code, out, err = run_cli(db, ["list"])
    assert code == 0, err
    assert "SPY" in out
    assert "1 trades" in out

    code, out, err = run_cli(db, ["summary", "--month", "2024-06"])
    assert code == 0, err
    assert "Total P&L: 396.00 USD" in out
    assert "2024-06-03" in out

    code, out, err = run_cli(db, ["stats"])
    assert code == 0, err
    assert "Year: 2024" in out
    assert "Best Day: 2024-06-03 (396.00, 1 trades)" in out

    # stats are per user
    code, out, err = run_cli(db, ["stats", "--all-time"], user="someone-else")
    assert code == 0, err
    assert "Total Trades: 0" in out
    assert "Best Day: -" in out


def test_invalid_trade_exits_with_error(tmp_path: Path):
    db = tmp_path / "journal.db"
    bad = _write(
        tmp_path, "bad.json",
        symbol="SPY", asset_type="OPTION", direction="LONG", quantity=1,
        entry_price="1", exit_price="2", opened_at="2024-06-03", closed_at="2024-06-03",
    )
    code, out, err = run_cli(db, ["add", str(bad)])
    assert code == 2
    assert "Error: Options require type, strike, and expiry" in out


def test_rate_uses_fallback_without_refresh(tmp_path: Path):
    code, out, err = run_cli(tmp_path / "journal.db", ["rate"])
    assert code == 0, err
    assert "CAD->USD: 0.732" in out
    assert "FALLBACK" in out

from pathlib import Path
import subprocess
import sys


def run_cli(db_path, args):
    cmd = [sys.executable, "scripts/migrate.py", "--db", str(db_path)] + args
    res = subprocess.run(cmd, capture_output=True, text=True)
    return res.returncode, res.stdout, res.stderr


def test_cli_apply_and_list(tmp_path: Path):
    db = tmp_path / "cli.db"
    code, out, err = run_cli(db, ["apply"])
    assert code == 0
    assert "Applied migrations: [1, 2, 3]" in out

    code, out, err = run_cli(db, ["list"])
    assert code == 0
    assert "Available migrations:" in out
    assert "pending" not in out


def test_cli_apply_dry_run(tmp_path: Path):
    db = tmp_path / "cli2.db"
    code, out, err = run_cli(db, ["apply", "--dry-run"])
    assert code == 0
    assert "Pending migrations:" in out

    run_cli(db, ["apply"])
    code, out, err = run_cli(db, ["apply", "--dry-run"])
    assert code == 0
    assert "No pending migrations" in out


def test_cli_rollback_dry_run_keeps_schema(tmp_path: Path):
    db = tmp_path / "cli3.db"
    run_cli(db, ["apply"])
    code, out, err = run_cli(db, ["rollback", "--last", "--dry-run"])
    assert code == 0
    assert "Would rollback migration 3" in out

    code, out, err = run_cli(db, ["list"])
    assert "3: applied" in out


def test_cli_rollback_with_yes_flag(tmp_path: Path):
    db = tmp_path / "cli4.db"
    run_cli(db, ["apply"])
    code, out, err = run_cli(db, ["rollback", "--last", "--yes"])
    assert code == 0
    assert "Rolled back migration 3" in out
    assert "Are you sure" not in out


def test_cli_rollback_on_empty_db(tmp_path: Path):
    db = tmp_path / "cli5.db"
    code, out, err = run_cli(db, ["rollback", "--last"])
    assert code == 0
    assert "No applied migrations to rollback" in out

from pathlib import Path

import nsm.main as cli
from nsm.config import AppPaths


def _paths(tmp_path: Path) -> AppPaths:
    return AppPaths(base_dir=tmp_path, db_path=tmp_path / "studio.db", logs_dir=tmp_path / "logs")


def test_summary_and_low_stock_commands(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_app_paths", lambda: _paths(tmp_path))
    monkeypatch.delenv("NSM_STORE_BACKEND", raising=False)

    assert cli.main(["summary", "--year", "2024", "--month", "2"]) == 0
    assert "2024-02  income=0.00  expense=0.00  profit=0.00" in capsys.readouterr().out

    assert cli.main(["low-stock"]) == 0
    assert (tmp_path / "studio.db").exists()


def test_export_command_writes_workbook(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(cli, "get_app_paths", lambda: _paths(tmp_path))
    monkeypatch.delenv("NSM_STORE_BACKEND", raising=False)
    out = tmp_path / "r.xlsx"

    assert cli.main(["export", str(out), "--start", "2024-01-01", "--end", "2024-01-31"]) == 0
    assert out.exists()


def test_bad_month_returns_error_code(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_app_paths", lambda: _paths(tmp_path))
    monkeypatch.delenv("NSM_STORE_BACKEND", raising=False)

    assert cli.main(["summary", "--month", "13"]) == 1
    assert "Month must be between 1 and 12" in capsys.readouterr().err

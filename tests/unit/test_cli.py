"""
Unit tests for the command-line interface (paths that need no database).
"""

import json

import pytest

from spotify_cdc.cli.load_cli import build_parser, main

TABLES_YAML = """
tables:
  - table: DimUser
    cdc_col: updated_at
  - table: FactStream
    cdc_col: stream_timestamp
"""


@pytest.fixture
def tables_file(tmp_path):
    path = tmp_path / "tables.yaml"
    path.write_text(TABLES_YAML)
    return path


@pytest.fixture
def watermark_file(tmp_path):
    path = tmp_path / "watermarks.json"
    path.write_text(json.dumps({
        "silver.DimUser": {
            "cdc": "2025-01-03T00:00:00+00:00",
            "last_success_at": "2025-01-04T02:00:13+00:00",
        },
        "silver.FactStream": {"cdc": "2025-01-03T10:00:00+00:00"},
    }))
    return path


class TestParser:
    """Tests for argument parsing"""

    def test_run_defaults(self, tables_file):
        args = build_parser().parse_args(["run", "--tables", str(tables_file)])
        assert args.command == "run"
        assert args.source == "postgres"
        assert args.watermarks is None
        assert args.dry_run is False
        assert args.no_quarantine is False
        assert args.db_password is None

    def test_run_options(self, tables_file):
        args = build_parser().parse_args([
            "run", "--tables", str(tables_file),
            "--source", "spark", "--snake-case",
            "--workers", "8", "--batch-size", "250", "--step-timeout", "600",
            "--dry-run",
        ])
        assert args.source == "spark"
        assert args.snake_case is True
        assert args.workers == 8
        assert args.batch_size == 250
        assert args.step_timeout == 600.0
        assert args.dry_run is True

    def test_unknown_source_rejected(self, tables_file):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--tables", str(tables_file), "--source", "kafka"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()


class TestRunCommand:
    """Tests for run paths that fail before connecting"""

    def test_missing_tables_file(self, tmp_path):
        assert main(["run", "--tables", str(tmp_path / "absent.yaml")]) == 2

    def test_invalid_worker_count(self, tables_file):
        assert main(["run", "--tables", str(tables_file), "--workers", "0"]) == 2
        assert main(["run", "--tables", str(tables_file), "--workers", "65"]) == 2

    def test_invalid_batch_size(self, tables_file):
        assert main(["run", "--tables", str(tables_file), "--batch-size", "-1"]) == 2

    def test_missing_password(self, tables_file, monkeypatch):
        monkeypatch.delenv("WAREHOUSE_DB_PASSWORD", raising=False)
        assert main(["run", "--tables", str(tables_file)]) == 2


class TestWatermarksCommand:
    """Tests for watermark listing and reset against a JSON file"""

    def test_list(self, watermark_file, capsys):
        assert main(["watermarks", "list", "--watermarks", str(watermark_file)]) == 0
        out = capsys.readouterr().out
        assert "silver.DimUser" in out
        assert "silver.FactStream" in out
        assert "2025-01-03T10:00:00+00:00" in out

    def test_list_empty(self, tmp_path, capsys):
        path = tmp_path / "none.json"
        assert main(["watermarks", "list", "--watermarks", str(path)]) == 0
        assert "full load" in capsys.readouterr().out

    def test_reset(self, watermark_file, capsys):
        code = main([
            "watermarks", "reset", "--table", "silver.FactStream", "--watermarks", str(watermark_file)
        ])
        assert code == 0
        assert "removed" in capsys.readouterr().out
        assert set(json.loads(watermark_file.read_text())) == {"silver.DimUser"}

    def test_reset_unknown_table(self, watermark_file, capsys):
        code = main([
            "watermarks", "reset", "--table", "silver.DimDate", "--watermarks", str(watermark_file)
        ])
        assert code == 0
        assert "No watermark stored" in capsys.readouterr().out

    def test_reset_requires_table(self, watermark_file):
        with pytest.raises(SystemExit):
            main(["watermarks", "reset", "--watermarks", str(watermark_file)])

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        assert main(["watermarks", "list", "--watermarks", str(path)]) == 2

    def test_reset_under_legacy_global_date(self, tmp_path, capsys):
        path = tmp_path / "cdc.json"
        path.write_text(json.dumps({"cdc": "2025-01-05"}))
        code = main(["watermarks", "reset", "--table", "silver.DimUser", "--watermarks", str(path)])
        assert code == 0
        assert "removed" in capsys.readouterr().out
        assert json.loads(path.read_text()) == {"cdc": "2025-01-05", "silver.DimUser": {"cdc": None}}

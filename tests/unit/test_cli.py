"""
Tests for the dbxml command-line entry point.
"""

import os

from unittest.mock import Mock, patch

import pytest

from dbxml_converter import __version__
from dbxml_converter.cli import main
from dbxml_converter.mapping.schema_inference import SchemaInferenceEngine


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in [name for name in os.environ if name.startswith('DBXML_')]:
        monkeypatch.delenv(name)


@pytest.fixture
def conf_dir(tmp_path):
    return tmp_path / "conf"


def test_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_infer_writes_config_and_ddl(conf_dir, monster_list_file):
    assert main(["--config-dir", str(conf_dir), "infer", str(monster_list_file)]) == 0

    assert (conf_dir / "monster_list.json").exists()
    ddl = (conf_dir / "sql" / "monster_list.sql").read_text(encoding="utf-8")
    assert "CREATE TABLE `monster_list__drops__item`" in ddl


def test_infer_reports_failed_documents(conf_dir, monster_list_file, tmp_path):
    empty = tmp_path / "empty.xml"
    empty.write_text("<empty/>", encoding="utf-8")

    assert main(["--config-dir", str(conf_dir), "infer", str(monster_list_file), str(empty)]) == 1
    # The good document is still written
    assert (conf_dir / "monster_list.json").exists()
    assert not (conf_dir / "empty.json").exists()


def test_rename_needs_single_file(conf_dir, monster_list_file, game_settings_file):
    args = ["--config-dir", str(conf_dir), "infer", str(monster_list_file), str(game_settings_file),
            "--rename", "beasts"]
    assert main(args) == 1


def test_infer_with_rename(conf_dir, monster_list_file):
    assert main(["--config-dir", str(conf_dir), "infer", str(monster_list_file), "--rename", "beasts"]) == 0
    assert (conf_dir / "beasts.json").exists()


def test_infer_apply_runs_ddl(conf_dir, monster_list_file):
    database = Mock()
    with patch('dbxml_converter.cli._open_database', return_value=database):
        assert main(["--config-dir", str(conf_dir), "infer", str(monster_list_file), "--apply"]) == 0

    # Drop and create for each of the four tables
    assert database.execute.call_count == 8
    database.close_all.assert_called_once()


def test_root_command(conf_dir, monster_list_file, capsys):
    main(["--config-dir", str(conf_dir), "infer", str(monster_list_file)])
    capsys.readouterr()

    assert main(["--config-dir", str(conf_dir), "root", "monster_list__drops__item__effects__effect"]) == 0
    assert capsys.readouterr().out.strip() == "monster_list"


def test_unknown_table_fails(conf_dir, monster_list_file):
    main(["--config-dir", str(conf_dir), "infer", str(monster_list_file)])
    assert main(["--config-dir", str(conf_dir), "root", "no_such_table"]) == 1


def test_import_then_export(conf_dir, monster_list_file, tmp_path, sqlite_db):
    sqlite_db.create_inferred_tables(SchemaInferenceEngine().infer_file(monster_list_file))
    main(["--config-dir", str(conf_dir), "infer", str(monster_list_file)])
    output_dir = tmp_path / "out"

    with patch('dbxml_converter.cli._open_database', return_value=sqlite_db):
        assert main(["--config-dir", str(conf_dir), "import", "monster_list",
                     "--file", str(monster_list_file), "--batch-size", "2"]) == 0
        assert main(["--config-dir", str(conf_dir), "export", "monster_list__skills__skill",
                     "--output-dir", str(output_dir), "--page-size", "1", "--workers", "2"]) == 0

    assert sqlite_db.total_row_count("monster_list") == 2
    assert sqlite_db.total_row_count("monster_list__drops__item") == 3
    assert (output_dir / "monster_list.xml").exists()


def test_invalid_override_fails(conf_dir, monster_list_file, sqlite_db):
    main(["--config-dir", str(conf_dir), "infer", str(monster_list_file)])
    with patch('dbxml_converter.cli._open_database', return_value=sqlite_db):
        assert main(["--config-dir", str(conf_dir), "export", "monster_list", "--page-size", "0"]) == 1

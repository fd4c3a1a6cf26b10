"""
Shared fixtures: the sqlite database stand-in and sample documents on disk.
"""

import pytest

from helpers import GAME_SETTINGS_XML, MONSTER_LIST_XML, SqliteDatabase


@pytest.fixture
def sqlite_db():
    database = SqliteDatabase()
    yield database
    database.close()


@pytest.fixture
def monster_list_file(tmp_path):
    path = tmp_path / "monster_list.xml"
    path.write_text(MONSTER_LIST_XML, encoding="utf-8")
    return path


@pytest.fixture
def game_settings_file(tmp_path):
    path = tmp_path / "game_settings.xml"
    path.write_text(GAME_SETTINGS_XML, encoding="utf-8")
    return path

"""Test helpers: an in-memory sqlite stand-in for the MySQL database and sample documents."""

import sqlite3
import threading

from typing import Any, Dict, List, Optional

from dbxml_converter.exceptions import DatabaseOperationError
from dbxml_converter.interfaces import DatabaseInterface


class SqliteDatabase(DatabaseInterface):
    """
    DatabaseInterface over a single in-memory sqlite connection.

    Every statement is serialized through one lock so exporter threads can
    share it. Transactions use explicit BEGIN/COMMIT/ROLLBACK.
    """

    def __init__(self):
        self.connection = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
        self.connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self.statements: List[str] = []
        self.transactions_committed = 0
        self.transactions_rolled_back = 0

    def _run(self, sql: str, params=()):
        with self._lock:
            self.statements.append(sql)
            try:
                return self.connection.execute(sql, params)
            except sqlite3.Error as e:
                raise DatabaseOperationError(f"{e} (SQL: {sql[:200]})") from e

    def create_table(self, name: str, columns) -> None:
        """Create a table from ``(name, sql_type, constraint)`` column definitions."""
        body = ", ".join(f'"{column.name}" {column.sql_type} {column.constraint}'.strip() for column in columns)
        self._run(f'DROP TABLE IF EXISTS "{name}"')
        self._run(f'CREATE TABLE "{name}" ({body})')

    def create_inferred_tables(self, result) -> None:
        for table in result.tables:
            self.create_table(table.name, table.columns)

    def query(self, sql: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._run(sql).fetchall()]

    def execute(self, sql: str) -> None:
        self._run(sql)

    def batch_insert(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        columns = []
        for row in rows:
            for column in row:
                if column not in columns:
                    columns.append(column)
        column_list = ", ".join(f'"{column}"' for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        sql = f'INSERT INTO "{table_name}" ({column_list}) VALUES ({placeholders})'
        with self._lock:
            for row in rows:
                self._run(sql, tuple(row.get(column) for column in columns))
        return len(rows)

    def begin_transaction(self) -> None:
        self._run("BEGIN")

    def commit(self) -> None:
        self._run("COMMIT")
        self.transactions_committed += 1

    def rollback(self) -> None:
        self._run("ROLLBACK")
        self.transactions_rolled_back += 1

    def table_exists(self, table_name: str) -> bool:
        rows = self.query(f"SELECT name FROM sqlite_master WHERE type = 'table' AND name = '{table_name}'")
        return bool(rows)

    def total_row_count(self, table_name: str, where: Optional[str] = None) -> int:
        sql = f'SELECT COUNT(*) AS row_count FROM "{table_name}"'
        if where:
            sql += f" WHERE {where}"
        return int(self.query(sql)[0]['row_count'])

    def clear_table(self, table_name: str, where: Optional[str] = None) -> None:
        sql = f'DELETE FROM "{table_name}"'
        if where:
            sql += f" WHERE {where}"
        self._run(sql)

    def close(self):
        self.connection.close()

    def close_all(self):
        # The fixture owns the connection
        pass


class FailingSqliteDatabase(SqliteDatabase):
    """Raises on the ``fail_on_call``-th batch insert into ``fail_table``."""

    def __init__(self, fail_table: str, fail_on_call: int = 1):
        super().__init__()
        self.fail_table = fail_table
        self.fail_on_call = fail_on_call
        self._calls = 0

    def batch_insert(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        if table_name == self.fail_table:
            self._calls += 1
            if self._calls == self.fail_on_call:
                # Write part of the batch first so rollback has something to undo
                super().batch_insert(table_name, rows[:1])
                raise DatabaseOperationError(f"Injected failure inserting into {table_name}",
                                             error_category="database_error")
        return super().batch_insert(table_name, rows)


MONSTER_LIST_XML = """<?xml version="1.0" encoding="UTF-8"?>
<monsters version="2">
    <monster>
        <id>1</id>
        <name>Slime</name>
        <level unit="lv">3</level>
        <tag>blue</tag>
        <tag>small</tag>
        <drops>
            <item>
                <itemId>10</itemId>
                <rate>0.5</rate>
                <effects>
                    <effect>
                        <kind>heal</kind>
                    </effect>
                    <effect>
                        <kind>shine</kind>
                    </effect>
                </effects>
            </item>
            <item>
                <itemId>11</itemId>
                <rate>0.1</rate>
            </item>
        </drops>
        <skills>
            <skill>
                <skillName>jump</skillName>
            </skill>
        </skills>
    </monster>
    <monster>
        <id>2</id>
        <name>Bat</name>
        <tag>dark</tag>
        <drops>
            <item>
                <itemId>12</itemId>
                <rate>0.25</rate>
                <effects>
                    <effect>
                        <kind>poison</kind>
                    </effect>
                </effects>
            </item>
        </drops>
    </monster>
</monsters>
"""

GAME_SETTINGS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<settings>
    <title>Dungeon</title>
    <maxPlayers>4</maxPlayers>
    <difficulty mode="hard">3</difficulty>
    <levels>
        <level>
            <levelId>1</levelId>
            <boss>Slime King</boss>
        </level>
        <level>
            <levelId>2</levelId>
            <boss>Bat Lord</boss>
        </level>
    </levels>
</settings>
"""

"""
ODBC Database - MySQL access for the converter

Implements DatabaseInterface on top of pyodbc. Each thread gets its own
connection (pyodbc connections must not be shared across threads), opened with
autocommit disabled so the importer controls transaction boundaries batch by
batch. Statements issued outside an explicit transaction are committed
immediately.
"""

import logging
import threading

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pyodbc

from ..exceptions import DatabaseConnectionError, DatabaseOperationError
from ..interfaces import DatabaseInterface
from ..models import is_valid_table_name
from .bulk_insert_strategy import BulkInsertStrategy


class OdbcDatabase(DatabaseInterface):
    """
    Thread-aware pyodbc implementation of DatabaseInterface for MySQL.

    Connection Handling:
    - One connection per thread, created lazily and tracked for close_all()
    - autocommit=False; explicit begin/commit/rollback per calling thread
    - UTF-8 encoding/decoding configured on every connection

    Table names are validated against ``^[A-Za-z0-9_]+$`` and quoted with
    backticks before being interpolated into SQL.
    """

    def __init__(self, connection_string: str, connection_timeout: int = 30,
                 fast_executemany: bool = False):
        """
        Initialize the database.

        Args:
            connection_string: ODBC connection string
            connection_timeout: Login timeout in seconds
            fast_executemany: Enable pyodbc parameter arrays for inserts
        """
        self.logger = logging.getLogger(__name__)
        self.connection_string = connection_string
        self.connection_timeout = connection_timeout
        self.bulk_insert_strategy = BulkInsertStrategy(fast_executemany=fast_executemany, logger=self.logger)
        self._local = threading.local()
        self._connections: List[pyodbc.Connection] = []
        self._connections_lock = threading.Lock()

    @classmethod
    def from_config_manager(cls, config_manager) -> 'OdbcDatabase':
        database_config = config_manager.database_config
        return cls(
            config_manager.get_database_connection_string(),
            connection_timeout=database_config.connection_timeout,
            fast_executemany=database_config.fast_executemany,
        )

    def _connection(self) -> pyodbc.Connection:
        connection = getattr(self._local, 'connection', None)
        if connection is not None:
            return connection
        try:
            connection = pyodbc.connect(
                self.connection_string,
                autocommit=False,
                timeout=self.connection_timeout,
            )
            connection.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            connection.setdecoding(pyodbc.SQL_WCHAR, encoding='utf-8')
            connection.setencoding(encoding='utf-8')
        except pyodbc.Error as e:
            self.logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e
        self._local.connection = connection
        self._local.in_transaction = False
        with self._connections_lock:
            self._connections.append(connection)
        return connection

    @contextmanager
    def _cursor(self):
        cursor = self._connection().cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    def _in_transaction(self) -> bool:
        return getattr(self._local, 'in_transaction', False)

    def _autocommit(self):
        if not self._in_transaction():
            self._connection().commit()

    def _quote(self, table_name: str) -> str:
        if not is_valid_table_name(table_name):
            raise DatabaseOperationError(f"Invalid table name: '{table_name}'", error_category="invalid_table_name")
        return f"`{table_name}`"

    def query(self, sql: str) -> List[Dict[str, Any]]:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Query: {sql}")
        try:
            with self._cursor() as cursor:
                cursor.execute(sql)
                columns = [description[0] for description in cursor.description]
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
            self._autocommit()
            return rows
        except pyodbc.Error as e:
            self.logger.error(f"Query failed: {e} (SQL: {sql[:200]})")
            raise DatabaseOperationError(f"Query failed: {e}") from e

    def execute(self, sql: str) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Execute: {sql}")
        try:
            with self._cursor() as cursor:
                cursor.execute(sql)
            self._autocommit()
        except pyodbc.Error as e:
            self.logger.error(f"Statement failed: {e} (SQL: {sql[:200]})")
            raise DatabaseOperationError(f"Statement failed: {e}") from e

    def batch_insert(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        self._quote(table_name)
        with self._cursor() as cursor:
            inserted = self.bulk_insert_strategy.insert(cursor, rows, table_name)
        self._autocommit()
        return inserted

    def begin_transaction(self) -> None:
        # autocommit is off, the driver opens the transaction on the first statement
        self._connection()
        self._local.in_transaction = True
        self.logger.debug("Transaction started")

    def commit(self) -> None:
        try:
            self._connection().commit()
            self.logger.debug("Transaction committed")
        finally:
            self._local.in_transaction = False

    def rollback(self) -> None:
        try:
            self._connection().rollback()
        finally:
            self._local.in_transaction = False

    def table_exists(self, table_name: str) -> bool:
        self._quote(table_name)
        rows = self.query(
            "SELECT COUNT(*) AS table_count FROM information_schema.tables "
            f"WHERE table_schema = DATABASE() AND table_name = '{table_name}'"
        )
        return bool(rows and rows[0]['table_count'])

    def total_row_count(self, table_name: str, where: Optional[str] = None) -> int:
        sql = f"SELECT COUNT(*) AS row_count FROM {self._quote(table_name)}"
        if where:
            sql += f" WHERE {where}"
        rows = self.query(sql)
        return int(rows[0]['row_count']) if rows else 0

    def clear_table(self, table_name: str, where: Optional[str] = None) -> None:
        quoted = self._quote(table_name)
        if where:
            self.execute(f"DELETE FROM {quoted} WHERE {where}")
            return
        try:
            self.execute(f"TRUNCATE TABLE {quoted}")
        except DatabaseOperationError as e:
            self.logger.warning(f"TRUNCATE of {table_name} failed, falling back to DELETE: {e}")
            self.execute(f"DELETE FROM {quoted}")

    def close_all(self):
        """Close every connection opened by any thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.close()
            except pyodbc.Error as e:
                self.logger.warning(f"Error closing connection: {e}")
        self._local = threading.local()

    def test_connection(self) -> bool:
        """
        Test database connectivity.

        Returns:
            True if a trivial query succeeds
        """
        try:
            self.query("SELECT 1 AS ok")
            self.logger.info("Database connection test successful")
            return True
        except (DatabaseConnectionError, DatabaseOperationError) as e:
            self.logger.error(f"Database connection test failed: {e}")
            return False

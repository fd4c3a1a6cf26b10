"""
Row insertion for imported table forests.

BulkInsertStrategy turns a list of row dictionaries into one parameterized
INSERT, sends it with executemany and drops to row-by-row execute when the
driver rejects the parameter array. Driver errors leave as
DatabaseOperationError with a category the importer can log.
"""

import logging
import pyodbc

from typing import Any, Dict, List, Tuple

from ..exceptions import DatabaseOperationError


# Driver messages that mean "the parameter array was refused", not "the data is bad"
ARRAY_REJECTION_HINTS = ("cast specification", "converting", "optional feature")

# (substrings, category, label); first match wins
ERROR_CATEGORIES = (
    (("duplicate entry", "duplicate key"), "duplicate_key", "Duplicate key"),
    (("foreign key constraint",), "foreign_key_violation", "Foreign key violation"),
    (("data too long", "string data, right truncat"), "data_too_long", "Value too long"),
    (("doesn't exist", "unknown column"), "schema_mismatch", "Schema mismatch"),
    (("cannot be null",), "null_violation", "NULL violation"),
)


class BulkInsertStrategy:
    """
    Inserts rows of one table over an open cursor.

    More than one row goes through executemany first; a single row, or a batch
    whose parameter array the driver refuses, is executed row by row.
    """

    def __init__(self, fast_executemany: bool = False, logger: logging.Logger = None):
        self.fast_executemany = fast_executemany
        self.logger = logger or logging.getLogger(__name__)

    def insert(self, cursor, records: List[Dict[str, Any]], table_name: str) -> int:
        """
        Insert ``records`` into ``table_name`` and return how many went in.

        Raises:
            DatabaseOperationError: When the database refuses a row
        """
        if not records:
            return 0

        columns, rows, sql = self.prepare(records, table_name)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"{table_name}: {sql}")
            self.logger.debug(f"{table_name} first row: {dict(zip(columns, rows[0]))}")

        try:
            if not self._execute_many(cursor, sql, rows):
                for row in rows:
                    cursor.execute(sql, row)
        except pyodbc.Error as e:
            raise self._categorize(e, table_name) from e

        self.logger.debug(f"{len(rows)} rows written to {table_name}")
        return len(rows)

    def prepare(self, records: List[Dict[str, Any]], table_name: str) -> Tuple[List[str], List[Tuple], str]:
        """
        Build the column list, parameter tuples and INSERT statement.

        Columns are the union of every record's keys in first-seen order;
        a record missing a column contributes NULL.

        Returns:
            (columns, data_tuples, sql)
        """
        columns = list(dict.fromkeys(column for record in records for column in record))
        quoted = ', '.join(f"`{column}`" for column in columns)
        markers = ', '.join(['?'] * len(columns))
        sql = f"INSERT INTO `{table_name}` ({quoted}) VALUES ({markers})"
        return columns, [tuple(record.get(column) for column in columns) for record in records], sql

    def _execute_many(self, cursor, sql: str, rows: List[Tuple]) -> bool:
        """False when the rows still have to be executed one at a time."""
        if len(rows) < 2:
            return False

        cursor.fast_executemany = self.fast_executemany
        try:
            cursor.executemany(sql, rows)
        except pyodbc.Error as e:
            message = str(e).lower()
            if not any(hint in message for hint in ARRAY_REJECTION_HINTS):
                raise
            self.logger.debug(f"Parameter array refused, inserting row by row: {e}")
            return False
        return True

    def _categorize(self, e: Exception, table_name: str) -> DatabaseOperationError:
        message = str(e).lower()
        category, label = "database_error", "Database error"
        for needles, candidate, candidate_label in ERROR_CATEGORIES:
            if any(needle in message for needle in needles):
                category, label = candidate, candidate_label
                break

        error_msg = f"{label} inserting into {table_name}: {e}"
        self.logger.error(error_msg)
        return DatabaseOperationError(error_msg, error_category=category)

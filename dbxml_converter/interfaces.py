"""
Abstract interfaces and base classes for the conversion system.

This module defines the contracts that system components implement so that
the exporter, importer and schema inference can be driven with any database
backend and swapped out in tests.
"""

import logging

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import ProcessingResult, TableConfig


class DatabaseInterface(ABC):
    """
    Abstract interface for the relational store consumed by the converter.

    Implementations must be safe to call from several threads at once; the
    exporter issues page and sub-table queries concurrently.
    """

    @abstractmethod
    def query(self, sql: str) -> List[Dict[str, Any]]:
        """
        Run a query and return its rows.

        Args:
            sql: Complete SELECT statement

        Returns:
            Rows as dictionaries keyed by column name, in result-set column order
        """
        pass

    @abstractmethod
    def execute(self, sql: str) -> None:
        """
        Run a statement that returns no rows (DDL, DELETE).

        Args:
            sql: Statement to execute
        """
        pass

    @abstractmethod
    def batch_insert(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        """
        Insert rows into a table.

        The column set is the union of every row's keys in first-seen order;
        columns missing from a row are inserted as NULL.

        Returns:
            Number of rows inserted
        """
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        pass

    @abstractmethod
    def total_row_count(self, table_name: str, where: Optional[str] = None) -> int:
        """
        Count rows in a table.

        Args:
            table_name: Table to count
            where: Optional filter condition without the WHERE keyword
        """
        pass

    @abstractmethod
    def clear_table(self, table_name: str, where: Optional[str] = None) -> None:
        """
        Delete rows from a table.

        Args:
            table_name: Table to clear
            where: Optional filter condition; every row is removed when omitted
        """
        pass

    @contextmanager
    def transaction(self):
        """
        Context manager committing on success and rolling back on failure.

        Yields:
            The database itself
        """
        logger = logging.getLogger(__name__)
        self.begin_transaction()
        try:
            yield self
        except Exception as e:
            try:
                self.rollback()
                logger.error(f"Transaction rolled back due to error: {str(e)[:200]}")
            except Exception as rollback_error:
                logger.critical(f"ROLLBACK FAILED - Database may be in inconsistent state: {rollback_error}")
            raise
        else:
            self.commit()


class SchemaInferenceInterface(ABC):
    """Abstract interface for deriving DDL and mapping configs from sample documents."""

    @abstractmethod
    def infer_file(self, path: Union[str, Path], new_table_name: Optional[str] = None):
        """
        Infer table definitions and a Table Config from one XML document.

        Raises:
            ConfigurationError: If the document root is empty
        """
        pass

    @abstractmethod
    def infer_files(self, paths: Iterable[Union[str, Path]]):
        """Infer several documents, collecting per-file errors."""
        pass


class DocumentExporterInterface(ABC):
    """Abstract interface for writing a table forest out as one XML document."""

    @abstractmethod
    def export(self, output_dir: Optional[Union[str, Path]] = None) -> ProcessingResult:
        pass


class DocumentImporterInterface(ABC):
    """Abstract interface for loading one XML document into its table forest."""

    @abstractmethod
    def import_file(self, path: Optional[Union[str, Path]] = None) -> ProcessingResult:
        pass


class TableConfigSourceInterface(ABC):
    """Abstract interface for locating Table Configs."""

    @abstractmethod
    def load_table_config(self, name_or_path: Union[str, Path]) -> TableConfig:
        pass

    @abstractmethod
    def list_table_configs(self) -> List[TableConfig]:
        pass

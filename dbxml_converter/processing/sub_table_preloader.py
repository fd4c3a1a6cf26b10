"""
Sub-table preloading for export jobs.

Instead of issuing one query per parent row, the preloader reads every
sub-table of a Table Config once, groups the rows by association value and
hands out per-parent groups re-sorted the way the original per-row query would
have ordered them. A preloader lives for one export run only.
"""

import logging

from typing import Any, Dict, List, Optional

from ..exceptions import ConversionError, ExportError
from ..interfaces import DatabaseInterface
from ..models import MappingNode, TableConfig
from ..utils import SortKey, SqlUtils


class SubTablePreloader:
    """
    Per-export cache of sub-table rows grouped by association value.

    Groups are keyed by the string form of the association column; rows whose
    association value is NULL cannot belong to any parent and are dropped.
    """

    def __init__(self, database: DatabaseInterface):
        self.logger = logging.getLogger(__name__)
        self.database = database
        self._groups: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        self._sort_keys: Dict[str, Optional[SortKey]] = {}

    def preload(self, table_config: TableConfig) -> None:
        """
        Load every sub-table reachable from ``table_config``.

        Raises:
            ExportError: If any preload query fails
        """
        for mapping in table_config.children:
            self._preload(mapping)
        self.logger.info(
            f"Preloaded {len(self._groups)} sub-tables for '{table_config.table_name}' "
            f"({sum(len(rows) for groups in self._groups.values() for rows in groups.values())} rows)"
        )

    def _preload(self, mapping: MappingNode) -> None:
        sql = SqlUtils.build_preload_sql(mapping.sql, mapping.table_name)
        try:
            rows = self.database.query(sql)
        except ConversionError as e:
            self.logger.error(f"Failed to preload sub-table {mapping.table_name}: {e}")
            raise ExportError(f"Failed to preload sub-table {mapping.table_name}: {e}") from e

        column = mapping.association.local_column
        groups: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            value = row.get(column)
            if value is None:
                continue
            groups.setdefault(str(value), []).append(row)

        self._groups[mapping.table_name] = groups
        self._sort_keys[mapping.table_name] = SqlUtils.extract_sort_key(mapping.sql)
        self.logger.debug(f"Preloaded {len(rows)} rows of {mapping.table_name} in {len(groups)} groups")

        for child in mapping.children:
            self._preload(child)

    def is_loaded(self, table_name: str) -> bool:
        return table_name in self._groups

    def get(self, table_name: str, association_value: Any) -> List[Dict[str, Any]]:
        """
        Rows of ``table_name`` belonging to one ancestor, in query order.

        Args:
            table_name: Preloaded sub-table
            association_value: Ancestor's association value

        Returns:
            New list of rows (possibly empty)
        """
        if association_value is None:
            return []
        rows = self._groups.get(table_name, {}).get(str(association_value), [])
        sort_key = self._sort_keys.get(table_name)
        if sort_key is None:
            return list(rows)
        if sort_key.numeric:
            key = lambda row: _numeric_value(row.get(sort_key.field))
        else:
            key = lambda row: "" if row.get(sort_key.field) is None else str(row.get(sort_key.field))
        return sorted(rows, key=key, reverse=sort_key.descending)

    def clear(self):
        self._groups.clear()
        self._sort_keys.clear()


def _numeric_value(value: Any) -> float:
    # Mirrors a SQL CAST: NULL sorts first, non-numeric text counts as zero
    if value is None:
        return float('-inf')
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

"""
Utility functions for common patterns across the conversion system.
"""

import hashlib
import re

from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence

from .exceptions import ConfigurationError
from .models import ASSOCIATION_TOKEN, MAP_TYPE_TOKEN


SEGMENT_SEPARATOR = "__"


class IdentifierUtils:
    """Utility methods for building database identifiers from XML names."""

    @staticmethod
    def abbreviate_segment(segment: str) -> str:
        """
        Reduce every ``_`` separated piece of a segment to its first character.

        Examples:
            'skill_data_list' -> 's_d_l'
            'items' -> 'i'
        """
        return "_".join(piece[:1] for piece in segment.split("_"))

    @staticmethod
    def shorten(name: str, max_length: int = 60) -> str:
        """
        Shorten a ``parent__child`` table name to fit the identifier limit.

        Segments are abbreviated from the last one backwards until the name fits;
        if that is not enough the longest segment (rightmost on ties) is trimmed one
        character at a time. The number of ``__`` segments never changes and a name
        already within the limit is returned unchanged, so the operation is
        deterministic and idempotent.

        Args:
            name: Full table name
            max_length: Identifier limit

        Returns:
            Name of at most ``max_length`` characters

        Raises:
            ConfigurationError: If the name cannot be made to fit
        """
        if len(name) <= max_length:
            return name

        segments = name.split(SEGMENT_SEPARATOR)
        for index in range(len(segments) - 1, -1, -1):
            segments[index] = IdentifierUtils.abbreviate_segment(segments[index])
            if len(SEGMENT_SEPARATOR.join(segments)) <= max_length:
                return SEGMENT_SEPARATOR.join(segments)

        while len(SEGMENT_SEPARATOR.join(segments)) > max_length:
            longest = max(len(segment) for segment in segments)
            if longest <= 1:
                raise ConfigurationError(
                    f"Table name '{name}' cannot be shortened to {max_length} characters"
                )
            index = max(i for i, segment in enumerate(segments) if len(segment) == longest)
            segments[index] = segments[index][:-1]
        return SEGMENT_SEPARATOR.join(segments)

    @staticmethod
    def disambiguate(name: str, full_name: str, max_length: int = 60) -> str:
        """
        Derive a stable alternative for a shortened name that collides with another.

        The last segment gets a short hash of the full (unshortened) name.
        """
        digest = hashlib.md5(full_name.encode("utf-8")).hexdigest()[:4]
        segments = name.split(SEGMENT_SEPARATOR)
        room = max_length - len(SEGMENT_SEPARATOR.join(segments[:-1] + [""])) - len(digest) - 1
        if room < 1:
            raise ConfigurationError(f"No room to disambiguate table name '{name}'")
        segments[-1] = f"{segments[-1][:room]}_{digest}"
        return SEGMENT_SEPARATOR.join(segments)


@dataclass(frozen=True)
class SortKey:
    """
    Sort field recovered from an ``ORDER BY`` clause.

    Attributes:
        field: Bare column name
        numeric: True when the column was wrapped in a numeric CAST
        descending: True for ``DESC``
    """
    field: str
    numeric: bool = False
    descending: bool = False


class SqlUtils:
    """Utility methods for the small amount of SQL rewriting the converter needs."""

    _regex_cache = {
        'where': re.compile(r'\bwhere\b', re.IGNORECASE),
        'order_by': re.compile(r'\border\s+by\b', re.IGNORECASE),
        'cast': re.compile(r'^cast\s*\(\s*(.+?)\s+as\s+([a-z]+)', re.IGNORECASE),
        'limit': re.compile(r'\blimit\s+\d+', re.IGNORECASE),
    }

    _NUMERIC_CAST_TYPES = {
        'unsigned', 'signed', 'int', 'integer', 'bigint', 'decimal', 'numeric',
        'double', 'float', 'real',
    }

    @staticmethod
    def substitute(sql: str, association_value: Any = None, map_type: Optional[str] = None) -> str:
        """
        Replace the association and map-type placeholders in a mapping query.

        Args:
            sql: Query text
            association_value: Value replacing ``#associated_filed``
            map_type: Value replacing ``$mapType``

        Returns:
            Query ready to execute
        """
        if association_value is not None:
            sql = sql.replace(ASSOCIATION_TOKEN, SqlUtils.escape_literal(association_value))
        if map_type is not None:
            sql = sql.replace(MAP_TYPE_TOKEN, SqlUtils.escape_literal(map_type))
        return sql

    @staticmethod
    def escape_literal(value: Any) -> str:
        """Escape a value for use inside a single quoted SQL literal."""
        return str(value).replace("\\", "\\\\").replace("'", "''")

    @staticmethod
    def with_page(sql: str, limit: int, offset: int) -> str:
        """Append a LIMIT/OFFSET window to a query."""
        return f"{sql.rstrip().rstrip(';')} LIMIT {int(limit)} OFFSET {int(offset)}"

    @staticmethod
    def order_by_clause(sql: str) -> str:
        """Return the ``order by ...`` tail of a query, or an empty string."""
        match = SqlUtils._regex_cache['order_by'].search(sql)
        return sql[match.start():].strip() if match else ""

    @staticmethod
    def build_preload_sql(sql: str, table_name: str) -> str:
        """
        Turn a per-ancestor sub-table query into a query returning every row.

        A query with a WHERE clause becomes ``select * from <table> where 1=1``
        followed by its original ORDER BY; a query without one is used as is.
        """
        if not SqlUtils._regex_cache['where'].search(sql):
            return sql
        order_by = SqlUtils.order_by_clause(sql)
        preload = f"select * from {table_name} where 1=1"
        return f"{preload} {order_by}" if order_by else preload

    @staticmethod
    def extract_sort_key(sql: str) -> Optional[SortKey]:
        """
        Recover the first sort column of a query's ORDER BY clause.

        Examples:
            '... order by CAST(id AS UNSIGNED) ASC' -> SortKey('id', numeric=True)
            '... order by name desc' -> SortKey('name', descending=True)
        """
        order_by = SqlUtils.order_by_clause(sql)
        if not order_by:
            return None
        expression = SqlUtils._regex_cache['order_by'].sub('', order_by, count=1).strip()
        expression = SqlUtils._regex_cache['limit'].split(expression)[0].strip()
        if not expression:
            return None

        first, depth = [], 0
        for char in expression:
            if char == '(':
                depth += 1
            elif char == ')':
                depth -= 1
            elif char == ',' and depth == 0:
                break
            first.append(char)
        term = "".join(first).strip()

        numeric = False
        cast_match = SqlUtils._regex_cache['cast'].match(term)
        if cast_match:
            numeric = cast_match.group(2).lower() in SqlUtils._NUMERIC_CAST_TYPES
            column = cast_match.group(1)
            rest = term[term.rfind(')') + 1:]
        else:
            parts = term.split()
            column = parts[0]
            rest = " ".join(parts[1:])

        column = column.strip().strip('`"[]')
        if '.' in column:
            column = column.rsplit('.', 1)[1].strip('`"[]')
        return SortKey(column, numeric=numeric, descending=rest.strip().lower().startswith('desc'))


class CollectionUtils:
    """Utility methods for splitting work into batches and pages."""

    @staticmethod
    def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
        """Yield consecutive slices of at most ``size`` items."""
        if size <= 0:
            raise ValueError("size must be positive")
        for start in range(0, len(items), size):
            yield list(items[start:start + size])

    @staticmethod
    def page_count(total: int, page_size: int) -> int:
        """Number of pages needed for ``total`` rows."""
        if total <= 0:
            return 0
        return (total + page_size - 1) // page_size

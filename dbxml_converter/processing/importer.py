"""
Batch-transactional import of one XML document into its table forest.

The document is parsed and walked in memory first; only then are the
participating tables cleared and loaded, root table first and sub-tables in
(name length, name) order, one transaction per batch. If any batch fails every
participating table is cleared again, so a failed import never leaves a
partial document behind.
"""

import logging
import time
import uuid

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from ..exceptions import ConfigurationError, ConversionError, DatabaseBatchError
from ..interfaces import DatabaseInterface, DocumentImporterInterface
from ..models import (
    ATTRIBUTE_PREFIX, MAP_TYPE_COLUMN, MULTI_VALUE_SEPARATOR, ROW_ID_COLUMN,
    MappingNode, ProcessingConfig, ProcessingResult, TableConfig,
)
from ..monitoring.performance_monitor import PerformanceMonitor
from ..monitoring.progress import ProgressCounter
from ..parsing.xml_parser import XMLDocumentIO
from ..utils import CollectionUtils, SqlUtils


@dataclass
class _CollectState:
    rows: Dict[str, List[Dict[str, Any]]]
    counters: Dict[str, int] = field(default_factory=dict)
    warned: Set[Tuple[str, str]] = field(default_factory=set)


class DocumentImporter(DocumentImporterInterface):
    """
    Imports an XML document into the tables named by one Table Config.

    Row Construction:
    - Leaf children become columns (repeated leaves joined with ``!@#``)
    - Attributes become ``_attr_<name>`` (row element) or
      ``_attr__<tag>__<name>`` (leaf child) columns
    - Children that contain elements are matched to sub-table mappings by tag;
      wrapper elements are descended and every ``xml_tag`` element below
      becomes a row
    - Each sub-table row receives its association column from the parent row,
      plus the synthetic order / inherited key / row id / map type columns the
      config asks for
    """

    def __init__(self, table_config: TableConfig, database: DatabaseInterface,
                 processing_config: Optional[ProcessingConfig] = None, map_type: Optional[str] = None,
                 document_io: Optional[XMLDocumentIO] = None, monitor: Optional[PerformanceMonitor] = None):
        """
        Initialize the importer.

        Args:
            table_config: Mapping of the document to import
            database: Target of the rows
            processing_config: Batch size and row-id tables
            map_type: Active map-type variant; required for map-scoped configs
            document_io: Parser for the document
            monitor: Optional performance monitor receiving stage timings
        """
        self.logger = logging.getLogger(__name__)
        self.table_config = table_config
        self.database = database
        self.processing_config = processing_config or ProcessingConfig()
        self.map_type = map_type
        self.row_id_tables = set(self.processing_config.row_id_tables)
        self.document_io = document_io or XMLDocumentIO()
        self.monitor = monitor
        self.progress = ProgressCounter(f"import {table_config.table_name}", logger=self.logger)

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def resolve_path(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Locate the document to import.

        An explicit path wins; otherwise the config's ``file_path`` is used, with a
        ``<map_type>`` directory inserted before the file name when a map type is
        active.
        """
        if path:
            return Path(path)
        if not self.table_config.file_path:
            raise ConfigurationError(
                f"Table config '{self.table_config.table_name}' has no file_path and no file was given",
                source_file=self.table_config.source_path,
            )
        configured = Path(self.table_config.file_path)
        if self.map_type:
            return configured.parent / self.map_type / configured.name
        return configured

    def import_file(self, path: Optional[Union[str, Path]] = None) -> ProcessingResult:
        """
        Parse a document and import it.

        Raises:
            XMLParsingError: If the document cannot be parsed (no table is touched)
            ConfigurationError: If the document does not fit the config
            DatabaseBatchError: If a batch fails (all tables are cleared again)
        """
        path = self.resolve_path(path)
        self._stage_start('parsing')
        root = self.document_io.parse_file(path)
        self._stage_end('parsing')
        return self.import_document(root, source_file=str(path))

    def import_document(self, root, source_file: Optional[str] = None) -> ProcessingResult:
        """Import an already parsed document."""
        config = self.table_config
        if config.is_map_scoped and not self.map_type:
            raise ConfigurationError(
                f"Table config '{config.table_name}' is map-scoped; a map type is required",
                source_file=config.source_path,
            )

        start_time = time.time()
        self._stage_start('collect')
        rows_by_table = self.collect_rows(root)
        self._stage_end('collect')

        self._stage_start('clear')
        self.clear_tables()
        self._stage_end('clear')

        self._stage_start('insertion')
        try:
            self._load(rows_by_table, source_file)
        except DatabaseBatchError as e:
            self.logger.error(f"Import of {config.table_name} failed, clearing all tables: {e}")
            try:
                self.clear_tables()
            except ConversionError as clear_error:
                self.logger.critical(f"Compensating clear of {config.table_name} failed: {clear_error}")
            raise
        finally:
            self._stage_end('insertion')

        elapsed = time.time() - start_time
        self.logger.info(f"Imported {self.progress.processed} rows into {len(rows_by_table)} tables "
                         f"for {config.table_name} in {elapsed:.2f}s")
        if self.monitor is not None:
            self.monitor.record_records(self.progress.processed)
        return ProcessingResult(
            records_processed=self.progress.total,
            records_successful=self.progress.processed,
            processing_time_seconds=elapsed,
            performance_metrics={'rows_per_table': {name: len(rows) for name, rows in rows_by_table.items()}},
        )

    def load_order(self) -> List[str]:
        """Root table first, then sub-tables by (name length, name)."""
        config = self.table_config
        others = [name for name in config.all_table_names() if name != config.table_name]
        return [config.table_name] + sorted(others, key=lambda name: (len(name), name))

    def clear_tables(self) -> None:
        """Delete this document's rows from every participating table, longest name first."""
        names = sorted(self.table_config.all_table_names(), key=lambda name: (-len(name), name))
        where = None
        if self.table_config.is_map_scoped:
            where = f"{MAP_TYPE_COLUMN} = '{SqlUtils.escape_literal(self.map_type)}'"
        for name in names:
            if not self.database.table_exists(name):
                self.logger.warning(f"Table {name} does not exist, nothing to clear")
                continue
            self.database.clear_table(name, where)
        self.logger.debug(f"Cleared {len(names)} tables for {self.table_config.table_name}")

    def _load(self, rows_by_table: Dict[str, List[Dict[str, Any]]], source_file: Optional[str]):
        batch_size = self.processing_config.import_batch_size
        self.progress.reset(sum(len(rows) for rows in rows_by_table.values()))

        for table_name in self.load_order():
            rows = rows_by_table.get(table_name, [])
            for batch_index, batch in enumerate(CollectionUtils.chunked(rows, batch_size)):
                try:
                    with self.database.transaction():
                        self.database.batch_insert(table_name, batch)
                except Exception as e:
                    raise DatabaseBatchError(
                        f"Batch {batch_index} of {table_name} failed: {e}",
                        table_name=table_name,
                        batch_index=batch_index,
                        source_file=source_file,
                    ) from e
                self.progress.advance(len(batch))
            if rows:
                self.logger.debug(f"Loaded {len(rows)} rows into {table_name}")

    # ------------------------------------------------------------------
    # Document walk
    # ------------------------------------------------------------------

    def collect_rows(self, root) -> Dict[str, List[Dict[str, Any]]]:
        """
        Walk a document and build the rows of every participating table.

        Returns:
            Table name -> rows, in load order
        """
        config = self.table_config
        state = _CollectState(rows={name: [] for name in self.load_order()})

        root_tag = XMLDocumentIO.local_name(root.tag)
        if root_tag != config.xml_root_tag:
            self.logger.warning(f"Document root <{root_tag}> does not match configured <{config.xml_root_tag}>")

        if config.xml_item_tag:
            items = [child for child in XMLDocumentIO.child_elements(root)
                     if XMLDocumentIO.local_name(child.tag) == config.xml_item_tag]
        else:
            items = [root]

        for item in items:
            row = self._new_row(config.table_name, state)
            self._read_element(item, row, None, state)
            state.rows[config.table_name].append(row)

        self.logger.info(f"Collected {sum(len(rows) for rows in state.rows.values())} rows "
                         f"from {len(items)} items of <{root_tag}>")
        return state.rows

    def _new_row(self, table_name: str, state: _CollectState) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        if self.table_config.order_column:
            index = state.counters.get(table_name, 0)
            state.counters[table_name] = index + 1
            row[self.table_config.order_column] = index
        if self.table_config.is_map_scoped:
            row[MAP_TYPE_COLUMN] = self.map_type
        if table_name in self.row_id_tables:
            row[ROW_ID_COLUMN] = str(uuid.uuid4())
        return row

    def _read_element(self, element, row: Dict[str, Any], mapping: Optional[MappingNode], state: _CollectState):
        owner = mapping if mapping is not None else self.table_config

        for name, value in element.attrib.items():
            row[f"{ATTRIBUTE_PREFIX}{XMLDocumentIO.local_name(name)}"] = value

        containers = []
        for child in XMLDocumentIO.child_elements(element):
            tag = XMLDocumentIO.local_name(child.tag)
            child_mappings = _mappings_for_tag(owner.children, tag)
            if child_mappings or XMLDocumentIO.child_elements(child):
                containers.append((tag, child, child_mappings))
                continue
            if mapping is not None and not mapping.accepts_field(tag):
                continue
            text = child.text or ""
            row[tag] = f"{row[tag]}{MULTI_VALUE_SEPARATOR}{text}" if tag in row else text
            for name, value in child.attrib.items():
                row[f"{ATTRIBUTE_PREFIX}_{tag}__{XMLDocumentIO.local_name(name)}"] = value

        # Sub-tables last, so the parent row already holds every leaf they may inherit
        for tag, child, child_mappings in containers:
            if not child_mappings:
                self._warn_once(state, owner.table_name, tag,
                                f"No sub-table mapping for <{tag}> below {owner.table_name}; skipping")
                continue
            for child_mapping in child_mappings:
                self._read_sub_table(child, child_mapping, row, mapping, state)

    def _read_sub_table(self, element, mapping: MappingNode, parent_row: Dict[str, Any],
                        parent_mapping: Optional[MappingNode], state: _CollectState):
        container = element
        for tag in mapping.wrapper_path[1:]:
            container = next((child for child in XMLDocumentIO.child_elements(container)
                              if XMLDocumentIO.local_name(child.tag) == tag), None)
            if container is None:
                return

        if mapping.wrapper_path:
            targets = [child for child in XMLDocumentIO.child_elements(container)
                       if XMLDocumentIO.local_name(child.tag) == mapping.xml_tag]
        else:
            targets = [element]

        inherited = self.table_config.inherited_key_column
        for target in targets:
            row = self._new_row(mapping.table_name, state)
            if inherited:
                source = inherited if parent_mapping is not None else self.table_config.root_key
                row[inherited] = _as_text(parent_row.get(source))
            row[mapping.association.local_column] = self._association_value(parent_row, mapping, state)
            self._read_element(target, row, mapping, state)
            state.rows[mapping.table_name].append(row)

    def _association_value(self, parent_row: Dict[str, Any], mapping: MappingNode,
                           state: _CollectState) -> Optional[str]:
        source = mapping.association.source_field
        value = parent_row.get(source)
        if value is None and self.map_type:
            value = self.map_type
        if value is None:
            self._warn_once(state, mapping.table_name, source,
                            f"Parent rows of {mapping.table_name} have no '{source}'; "
                            f"association stored as NULL")
            return None
        return _as_text(value)

    def _warn_once(self, state: _CollectState, table_name: str, name: str, message: str):
        key = (table_name, name)
        if key not in state.warned:
            state.warned.add(key)
            self.logger.warning(message)

    def _stage_start(self, name: str):
        if self.monitor is not None:
            self.monitor.start_stage(name)

    def _stage_end(self, name: str):
        if self.monitor is not None:
            self.monitor.end_stage(name)


def _mappings_for_tag(mappings: List[MappingNode], tag: str) -> List[MappingNode]:
    """All mappings whose element (or first wrapper) is named ``tag``; wrappers may be shared."""
    return [mapping for mapping in mappings
            if (mapping.wrapper_path[0] if mapping.wrapper_path else mapping.xml_tag) == tag]


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)

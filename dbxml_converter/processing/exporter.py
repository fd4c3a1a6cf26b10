"""
Paged, concurrent export of a table forest to one XML document.

The root query is split into fixed-size pages. Each page is built by its own
worker into a private fragment and written to a temporary ``part_<page>.xml``
file; once every page has finished the fragments are merged in page order
under the document root. Nested sub-tables are populated per row, either from
a SubTablePreloader (one query per sub-table) or, for map-scoped configs,
from live per-row queries.
"""

import logging
import shutil
import tempfile
import time

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from lxml import etree

from ..exceptions import ConfigurationError, ConversionError, ExportError
from ..interfaces import DatabaseInterface, DocumentExporterInterface
from ..models import (
    ATTRIBUTE_PREFIX, MAP_TYPE_COLUMN, MULTI_VALUE_SEPARATOR, ROW_ID_COLUMN, SYNTHETIC_PREFIX,
    MappingNode, ProcessingConfig, ProcessingResult, TableConfig,
)
from ..monitoring.performance_monitor import PerformanceMonitor
from ..monitoring.progress import ProgressCounter
from ..parsing.xml_parser import XMLDocumentIO
from ..utils import CollectionUtils, SqlUtils
from .sub_table_preloader import SubTablePreloader
from .subtree_dispatcher import SubtreeDispatcher


@dataclass
class NodeSpec:
    """
    Lightweight, thread-private description of an element.

    Sub-tree tasks build NodeSpecs; only the page worker turns them into lxml
    elements, so no lxml tree is ever mutated by two threads.
    """
    tag: str
    text: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List['NodeSpec'] = field(default_factory=list)

    def append(self, child: 'NodeSpec') -> 'NodeSpec':
        self.children.append(child)
        return child

    def find_child(self, tag: str) -> Optional['NodeSpec']:
        for child in self.children:
            if child.tag == tag:
                return child
        return None

    def to_element(self, parent=None):
        if parent is None:
            element = etree.Element(self.tag, self.attributes)
        else:
            element = etree.SubElement(parent, self.tag, self.attributes)
        if self.text is not None:
            element.text = self.text
        for child in self.children:
            child.to_element(element)
        return element


class DocumentExporter(DocumentExporterInterface):
    """
    Exports the table forest described by one Table Config to an XML file.

    Concurrency:
    - Pages run on a ThreadPoolExecutor sized by ``export_workers``
    - Sub-trees of shallow levels fan out on a second, smaller pool through a
      SubtreeDispatcher; deeper levels are built inline
    - Each page fragment is private; merging happens on the calling thread in
      ascending page order, so output order never depends on completion order

    Failure Handling:
    - A failing page is logged; the remaining pages still complete
    - The job then raises ExportError; temporary files are always removed
    """

    def __init__(self, table_config: TableConfig, database: DatabaseInterface,
                 processing_config: Optional[ProcessingConfig] = None, map_type: Optional[str] = None,
                 output_dir: Optional[Union[str, Path]] = None, document_io: Optional[XMLDocumentIO] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        """
        Initialize the exporter.

        Args:
            table_config: Mapping of the document to export
            database: Source of the rows
            processing_config: Paging and pool sizes
            map_type: Active map-type variant; required for map-scoped configs
            output_dir: Directory receiving ``<export_name>.xml``
            document_io: Writer/reader for fragments and the final document
            monitor: Optional performance monitor receiving stage timings
        """
        self.logger = logging.getLogger(__name__)
        self.table_config = table_config
        self.database = database
        self.processing_config = processing_config or ProcessingConfig()
        self.map_type = map_type
        self.output_dir = Path(output_dir) if output_dir else None
        self.document_io = document_io or XMLDocumentIO()
        self.monitor = monitor
        self.progress = ProgressCounter(f"export {table_config.table_name}", logger=self.logger)
        self.dispatch_stats = None

        self._preloader: Optional[SubTablePreloader] = None
        self._dispatcher: Optional[SubtreeDispatcher] = None
        self._root_hidden = self._hidden_columns(None)
        self._hidden_by_table = {
            mapping.table_name: self._hidden_columns(mapping) for mapping in table_config.walk_mappings()
        }

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def export(self, output_dir: Optional[Union[str, Path]] = None) -> ProcessingResult:
        """
        Export the whole forest to ``<output_dir>/<export_name>.xml``.

        Returns:
            ProcessingResult with the output path and dispatch statistics

        Raises:
            ConfigurationError: If a map-scoped config has no map type
            ExportError: If any page, preload or the merge fails
        """
        config = self.table_config
        if config.is_map_scoped and not self.map_type:
            raise ConfigurationError(
                f"Table config '{config.table_name}' is map-scoped; a map type is required",
                source_file=config.source_path,
            )

        start_time = time.time()
        output_dir = Path(output_dir) if output_dir else (self.output_dir or Path.cwd())
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{config.export_name}.xml"

        where = None
        if config.is_map_scoped:
            where = f"{MAP_TYPE_COLUMN} = '{SqlUtils.escape_literal(self.map_type)}'"

        temp_dir = Path(tempfile.mkdtemp(prefix=f".{config.export_name}_parts_", dir=str(output_dir)))
        self._dispatcher = SubtreeDispatcher(self.processing_config.subtree_workers,
                                             self.processing_config.async_depth)
        try:
            try:
                total = self.database.total_row_count(config.table_name, where)
                page_count = CollectionUtils.page_count(total, self.processing_config.page_size)
                self.progress.reset(total)
                self.logger.info(f"Exporting {total} rows of {config.table_name} in {page_count} pages")

                if not config.is_map_scoped:
                    self._stage_start('preload')
                    self._preloader = SubTablePreloader(self.database)
                    self._preloader.preload(config)
                    self._stage_end('preload')
            except ExportError:
                raise
            except ConversionError as e:
                if isinstance(e, ConfigurationError):
                    raise
                raise ExportError(f"Export of {config.table_name} failed: {e}",
                                  source_file=config.source_path) from e

            self._stage_start('pages')
            page_files, errors = self._run_pages(page_count, temp_dir)
            self._stage_end('pages')
            if errors:
                raise ExportError(
                    f"Export of {config.table_name} failed on {len(errors)} of {page_count} pages: "
                    + "; ".join(errors[:5]),
                    source_file=config.source_path,
                )

            self._stage_start('merge')
            self._merge(page_files, page_count, output_path)
            self._stage_end('merge')
        finally:
            self._dispatcher.shutdown()
            self.dispatch_stats = self._dispatcher.stats
            if self._preloader is not None:
                self._preloader.clear()
                self._preloader = None
            shutil.rmtree(temp_dir, ignore_errors=True)

        elapsed = time.time() - start_time
        self.logger.info(f"Exported {self.progress.processed} rows of {config.table_name} "
                         f"to {output_path} in {elapsed:.2f}s")
        if self.monitor is not None:
            self.monitor.record_records(self.progress.processed)
        return ProcessingResult(
            records_processed=self.progress.total,
            records_successful=self.progress.processed,
            processing_time_seconds=elapsed,
            output_path=str(output_path),
            performance_metrics={
                'pages': page_count,
                'subtrees_dispatched': self.dispatch_stats.dispatched,
                'subtrees_inline': self.dispatch_stats.inline,
                'max_live_subtree_tasks': self.dispatch_stats.max_live,
            },
        )

    def _run_pages(self, page_count: int, temp_dir: Path):
        page_files: Dict[int, Path] = {}
        errors: List[str] = []
        if page_count == 0:
            return page_files, errors

        workers = min(self.processing_config.export_workers, page_count)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="export-page") as executor:
            future_to_page = {
                executor.submit(self._export_page, page, temp_dir): page
                for page in range(page_count)
            }
            for future in as_completed(future_to_page):
                page = future_to_page[future]
                try:
                    page_files[page] = future.result()
                except Exception as e:
                    error_msg = f"page {page}: {e}"
                    errors.append(error_msg)
                    self.logger.error(f"Export page failed for {self.table_config.table_name}, {error_msg}")
        return page_files, errors

    def _export_page(self, page: int, temp_dir: Path) -> Path:
        config = self.table_config
        page_size = self.processing_config.page_size
        sql = SqlUtils.with_page(SqlUtils.substitute(config.sql, map_type=self.map_type),
                                 page_size, page * page_size)
        rows = self.database.query(sql)

        fragment = NodeSpec(config.xml_root_tag)
        for row in rows:
            node = fragment.append(NodeSpec(config.xml_item_tag)) if config.xml_item_tag else fragment
            self._populate(node, row, None, depth=1)
            self.progress.advance(1)

        path = temp_dir / f"part_{page}.xml"
        self.document_io.write_document(fragment.to_element(), path, pretty=False)
        self.logger.debug(f"Page {page} of {config.table_name}: {len(rows)} rows -> {path.name}")
        return path

    def _merge(self, page_files: Dict[int, Path], page_count: int, output_path: Path) -> Path:
        config = self.table_config
        root = etree.Element(config.xml_root_tag)
        if config.xml_root_attr:
            root.set(*config.xml_root_attr)

        for page in range(page_count):
            fragment = self.document_io.parse_file(page_files[page])
            if not config.xml_item_tag:
                for name, value in fragment.attrib.items():
                    root.set(name, value)
            for child in list(fragment):
                root.append(child)

        return self.document_io.write_document(root, output_path)

    # ------------------------------------------------------------------
    # Row construction
    # ------------------------------------------------------------------

    def _hidden_columns(self, mapping: Optional[MappingNode]) -> Set[str]:
        hidden = {ROW_ID_COLUMN}
        if self.table_config.is_map_scoped:
            hidden.add(MAP_TYPE_COLUMN)
        if mapping is not None:
            hidden.add(mapping.association.local_column)
        return hidden

    def _populate(self, node: NodeSpec, row: Dict[str, Any], mapping: Optional[MappingNode], depth: int):
        """Fill ``node`` from one row and attach the row's sub-tables."""
        owner = mapping if mapping is not None else self.table_config
        hidden = self._hidden_by_table[mapping.table_name] if mapping is not None else self._root_hidden
        anchored = set()

        for column, value in row.items():
            if column in hidden or column.startswith(SYNTHETIC_PREFIX):
                continue
            child_mapping = owner.mapping_for_column(column)
            if child_mapping is not None:
                if child_mapping.table_name not in anchored:
                    anchored.add(child_mapping.table_name)
                    self._attach_children(node, row, child_mapping, depth)
                continue
            if value is None:
                continue
            self._apply_column(node, column, value, mapping)

        for child_mapping in owner.children:
            if child_mapping.table_name not in anchored:
                self._attach_children(node, row, child_mapping, depth)

    def _apply_column(self, node: NodeSpec, column: str, value: Any, mapping: Optional[MappingNode]):
        text = str(value)
        if column.startswith(ATTRIBUTE_PREFIX):
            name = column[len(ATTRIBUTE_PREFIX):]
            if name.startswith("_") and "__" in name[1:]:
                tag, attribute = name[1:].split("__", 1)
                if mapping is not None and not mapping.accepts_field(tag):
                    return
                target = node.find_child(tag) or node.append(NodeSpec(tag))
                target.attributes[attribute] = text
            else:
                node.attributes[name] = text
            return
        if mapping is not None and not mapping.accepts_field(column):
            return
        for part in text.split(MULTI_VALUE_SEPARATOR):
            node.append(NodeSpec(column, text=part))

    def _association_value(self, row: Dict[str, Any], mapping: MappingNode) -> Any:
        source = mapping.association.source_field
        if source not in row:
            raise ConfigurationError(
                f"Sub-table '{mapping.table_name}' associates on '{source}', "
                f"which is not a column of its parent rows",
                source_file=self.table_config.source_path,
            )
        value = row[source]
        if value is None and self.table_config.is_map_scoped:
            value = self.map_type
        return value

    def _child_rows(self, mapping: MappingNode, value: Any) -> List[Dict[str, Any]]:
        if self._preloader is not None:
            return self._preloader.get(mapping.table_name, value)
        return self.database.query(SqlUtils.substitute(mapping.sql, value, self.map_type))

    def _attach_children(self, node: NodeSpec, row: Dict[str, Any], mapping: MappingNode, depth: int):
        value = self._association_value(row, mapping)
        if value is None:
            return
        rows = self._child_rows(mapping, value)
        if not rows:
            return

        container = node
        for tag in mapping.wrapper_path:
            container = container.find_child(tag) or container.append(NodeSpec(tag))

        children = self._dispatcher.map(lambda child_row: self._build_row(mapping, child_row, depth),
                                         rows, depth)
        container.children.extend(children)

    def _build_row(self, mapping: MappingNode, row: Dict[str, Any], depth: int) -> NodeSpec:
        spec = NodeSpec(mapping.xml_tag)
        self._populate(spec, row, mapping, depth + 1)
        return spec

    def _stage_start(self, name: str):
        if self.monitor is not None:
            self.monitor.start_stage(name)

    def _stage_end(self, name: str):
        if self.monitor is not None:
            self.monitor.end_stage(name)

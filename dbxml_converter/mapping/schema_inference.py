"""
Schema inference from sample XML documents.

Given one representative document, SchemaInferenceEngine derives:
- MySQL DDL (DROP + CREATE) for a root table and one table per nested record type
- the equivalent Table Config, ready to drive export and import

Inference merges repeated siblings into a single "skeleton" so that every field
seen anywhere in the document gets a column, collapses pure wrapper elements
into the mapping's wrapper path, and sizes columns from the longest value
observed for each field.
"""

import json
import logging
import re

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..config.processing_defaults import ProcessingDefaults
from ..exceptions import ConfigurationError, ConversionError, SchemaInferenceError
from ..interfaces import DatabaseInterface, SchemaInferenceInterface
from ..models import (
    ASSOCIATION_TOKEN, ATTRIBUTE_PREFIX, INHERITED_KEY_PREFIX, MAP_TYPE_COLUMN, MAP_TYPE_TOKEN,
    ORDER_COLUMN, PARENT_ORDER_COLUMN, ROW_ID_COLUMN,
    InheritedAssociation, MappingNode, TableConfig,
)
from ..parsing.xml_parser import XMLDocumentIO
from ..utils import IdentifierUtils


@dataclass
class SkeletonNode:
    """Union of every same-named sibling at one position of a document."""
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    children: Dict[str, 'SkeletonNode'] = field(default_factory=dict)

    @property
    def has_children(self) -> bool:
        return bool(self.children)


@dataclass(frozen=True)
class StorageLevel:
    """Column type used for every non-key column, and the table's row format."""
    wide_type: Optional[str]
    row_format: str


@dataclass
class ColumnDefinition:
    name: str
    sql_type: str
    constraint: str = ""
    comment: str = ""

    def to_sql(self) -> str:
        parts = [f"`{self.name}`", self.sql_type]
        if self.constraint:
            parts.append(self.constraint)
        if self.comment:
            parts.append("COMMENT '" + self.comment.replace("'", "''") + "'")
        return " ".join(parts)


@dataclass
class InferredTable:
    """
    One table derived from the document.

    Attributes:
        name: Table name (shortened to the identifier limit)
        full_name: Unshortened ``parent__child`` chain
        element_tag: Tag of one row element
        columns: Column definitions in DDL order
        row_format: InnoDB row format
        parent_name: Nearest table-bearing ancestor, None for the root table
        wrapper_path: Collapsed wrapper elements between parent row and rows
        child_mappings: Mappings of the tables nested directly below this one
    """
    name: str
    full_name: str
    element_tag: str
    columns: List[ColumnDefinition]
    row_format: str
    parent_name: Optional[str] = None
    wrapper_path: Tuple[str, ...] = ()
    child_mappings: List[MappingNode] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def ddl_statements(self) -> List[str]:
        body = ",\n".join(f"  {column.to_sql()}" for column in self.columns)
        return [
            f"DROP TABLE IF EXISTS `{self.name}`;",
            f"CREATE TABLE `{self.name}` (\n{body}\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 "
            f"ROW_FORMAT={self.row_format};",
        ]


@dataclass
class InferenceResult:
    """Tables and Table Config inferred from one document."""
    table_config: TableConfig
    tables: List[InferredTable]
    source_file: Optional[str] = None

    @property
    def ddl_statements(self) -> List[str]:
        return [statement for table in self.tables for statement in table.ddl_statements()]

    @property
    def ddl_script(self) -> str:
        return "\n\n".join(self.ddl_statements) + "\n"

    def table(self, name: str) -> InferredTable:
        for table in self.tables:
            if table.name == name:
                return table
        raise KeyError(name)


@dataclass
class BatchInferenceResult:
    """Results of inferring several documents; failures do not stop siblings."""
    results: List[InferenceResult] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class _InferenceContext:
    root_key: str
    field_lengths: Dict[str, int]
    map_scoped: bool
    row_id_tables: Tuple[str, ...]
    tables: List[InferredTable] = field(default_factory=list)
    used_names: Dict[str, str] = field(default_factory=dict)


class SchemaInferenceEngine(SchemaInferenceInterface):
    """
    Derives MySQL DDL and Table Configs from sample XML documents.

    Column sizing follows an ordered list of (predicate, outcome) rules evaluated
    against the number of fields a table carries: very wide tables store every
    column as MEDIUMTEXT in COMPRESSED rows, wide tables use TEXT, and the rest
    get VARCHAR columns sized from observed data.
    """

    STORAGE_RULES: Tuple[Tuple[Callable[[int], bool], StorageLevel], ...] = (
        (lambda count: count > ProcessingDefaults.MEDIUMTEXT_FIELD_THRESHOLD,
         StorageLevel("MEDIUMTEXT", "COMPRESSED")),
        (lambda count: count > ProcessingDefaults.TEXT_FIELD_THRESHOLD,
         StorageLevel("TEXT", "DYNAMIC")),
        (lambda count: True, StorageLevel(None, "DYNAMIC")),
    )

    _invalid_name_chars = re.compile(r'[^A-Za-z0-9_]')

    def __init__(self, max_identifier_length: int = ProcessingDefaults.MAX_IDENTIFIER_LENGTH,
                 row_id_tables: Iterable[str] = (), document_io: Optional[XMLDocumentIO] = None):
        """
        Initialize the inference engine.

        Args:
            max_identifier_length: Longest table name to emit
            row_id_tables: Tables that get a synthetic UUID column
            document_io: Parser used for documents given by path
        """
        self.logger = logging.getLogger(__name__)
        self.max_identifier_length = max_identifier_length
        self.row_id_tables = tuple(row_id_tables)
        self.document_io = document_io or XMLDocumentIO()

    # ------------------------------------------------------------------
    # Document analysis
    # ------------------------------------------------------------------

    def build_skeleton(self, element) -> SkeletonNode:
        """Merge repeated siblings of ``element`` recursively into one skeleton."""
        skeleton = SkeletonNode(XMLDocumentIO.local_name(element.tag))
        self._merge_into(skeleton, element)
        return skeleton

    def _merge_into(self, skeleton: SkeletonNode, element):
        for name, value in element.attrib.items():
            skeleton.attributes.setdefault(XMLDocumentIO.local_name(name), value)
        for child in XMLDocumentIO.child_elements(element):
            tag = XMLDocumentIO.local_name(child.tag)
            node = skeleton.children.get(tag)
            if node is None:
                node = SkeletonNode(tag)
                skeleton.children[tag] = node
            self._merge_into(node, child)

    def collect_field_lengths(self, root) -> Dict[str, int]:
        """
        Longest observed text per leaf tag and per attribute column.

        Returns:
            Mapping of field/column name to maximum length
        """
        lengths: Dict[str, int] = {}

        def observe(key: str, value: Optional[str]):
            lengths[key] = max(lengths.get(key, 0), len(value or ""))

        for element in root.iter():
            if not XMLDocumentIO.is_element(element):
                continue
            tag = XMLDocumentIO.local_name(element.tag)
            is_leaf = not XMLDocumentIO.child_elements(element)
            if is_leaf:
                observe(tag, element.text)
            for name, value in element.attrib.items():
                name = XMLDocumentIO.local_name(name)
                observe(f"{ATTRIBUTE_PREFIX}{name}", value)
                if is_leaf:
                    observe(f"{ATTRIBUTE_PREFIX}_{tag}__{name}", value)
        return lengths

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def infer_file(self, path: Union[str, Path], new_table_name: Optional[str] = None,
                   single_row: Optional[bool] = None, map_scoped: bool = False) -> InferenceResult:
        """
        Infer DDL and a Table Config from a document on disk.

        Args:
            path: XML document
            new_table_name: Root table name to use instead of the file stem
            single_row: Force (True) or forbid (False) single-row mode; detected when None
            map_scoped: Produce a map-type filtered table set

        Returns:
            InferenceResult

        Raises:
            SchemaInferenceError: If the document is empty or has no fields
            XMLParsingError: If the document cannot be parsed
        """
        path = Path(path)
        root = self.document_io.parse_file(path)
        stem = self.sanitize_table_name(path.stem)
        table_name = self.sanitize_table_name(new_table_name) if new_table_name else stem
        return self.infer(
            root,
            table_name,
            single_row=single_row,
            map_scoped=map_scoped,
            file_path=str(path),
            real_table_name=stem if table_name != stem else "",
            source_file=str(path),
        )

    def infer(self, root, table_name: str, field_lengths: Optional[Dict[str, int]] = None,
              single_row: Optional[bool] = None, map_scoped: bool = False, file_path: str = "",
              real_table_name: str = "", source_file: Optional[str] = None) -> InferenceResult:
        """
        Infer DDL and a Table Config from a parsed document.

        Args:
            root: Document element
            table_name: Root table name
            field_lengths: Observed lengths per field; computed from ``root`` when None
            single_row: Force or forbid single-row mode; detected when None
            map_scoped: Produce a map-type filtered table set
            file_path: Document location recorded in the Table Config
            real_table_name: Export name recorded in the Table Config
            source_file: Used in error messages

        Returns:
            InferenceResult
        """
        source = source_file or file_path or table_name
        root_children = XMLDocumentIO.child_elements(root)
        if not root_children:
            raise SchemaInferenceError(
                f"Root element <{root.tag}> of {source} has no child elements; nothing to infer",
                source_file=source_file,
            )

        lengths = field_lengths if field_lengths is not None else self.collect_field_lengths(root)
        skeleton = self.build_skeleton(root)

        if single_row is None:
            single_row = len(skeleton.children) > 1
        if single_row:
            row, item_tag = skeleton, ""
        else:
            row = next(iter(skeleton.children.values()))
            item_tag = row.tag

        if not row.has_children:
            raise SchemaInferenceError(
                f"Row element <{row.tag}> of {source} has no child elements; nothing to infer",
                source_file=source_file,
            )
        # First leaf child; containers hold no value of their own
        root_key = next((child.tag for child in row.children.values() if not child.has_children), None)
        if root_key is None:
            raise SchemaInferenceError(
                f"Row element <{row.tag}> of {source} has no leaf child to use as its key",
                source_file=source_file,
            )

        context = _InferenceContext(
            root_key=root_key,
            field_lengths=lengths,
            map_scoped=map_scoped,
            row_id_tables=self.row_id_tables,
        )
        root_table = self._build_table(row, table_name, None, (), context)

        root_sql = f"select * from {root_table.name}"
        if map_scoped:
            root_sql += f" where {MAP_TYPE_COLUMN} = '{MAP_TYPE_TOKEN}'"
        root_sql += f" order by CAST({ORDER_COLUMN} AS UNSIGNED) ASC"

        root_attr = None
        if root.attrib:
            name, value = next(iter(root.attrib.items()))
            root_attr = (XMLDocumentIO.local_name(name), value)

        table_config = TableConfig(
            table_name=root_table.name,
            xml_root_tag=XMLDocumentIO.local_name(root.tag),
            sql=root_sql,
            xml_item_tag=item_tag,
            xml_root_attr=root_attr,
            real_table_name=real_table_name,
            file_path=file_path,
            children=root_table.child_mappings,
            order_column=ORDER_COLUMN,
            root_key=context.root_key,
            source_path=source_file,
        )
        self.logger.info(
            f"Inferred {len(context.tables)} tables for '{root_table.name}' "
            f"({'single row' if single_row else f'item <{item_tag}>'})"
        )
        return InferenceResult(table_config=table_config, tables=context.tables, source_file=source_file)

    def infer_files(self, paths: Iterable[Union[str, Path]], single_row: Optional[bool] = None,
                    map_scoped: bool = False) -> BatchInferenceResult:
        """
        Infer several documents, continuing past per-file failures.

        Documents sharing a file stem are renamed ``<parent dir>_<stem>``.

        Returns:
            BatchInferenceResult with per-file errors
        """
        paths = [Path(path) for path in paths]
        stem_counts: Dict[str, int] = {}
        for path in paths:
            stem_counts[path.stem] = stem_counts.get(path.stem, 0) + 1

        batch = BatchInferenceResult()
        for path in paths:
            new_name = None
            if stem_counts[path.stem] > 1:
                new_name = f"{path.parent.name}_{path.stem}"
            try:
                batch.results.append(
                    self.infer_file(path, new_table_name=new_name, single_row=single_row, map_scoped=map_scoped)
                )
            except (ConversionError, OSError) as e:
                batch.errors[str(path)] = str(e)
                self.logger.error(f"Schema inference failed for {path}: {e}")

        self.logger.info(f"Schema inference finished: {len(batch.results)} succeeded, {len(batch.errors)} failed")
        return batch

    def sanitize_table_name(self, name: str) -> str:
        cleaned = self._invalid_name_chars.sub('_', name.strip())
        if not cleaned:
            raise ConfigurationError(f"Cannot derive a table name from '{name}'")
        return cleaned

    # ------------------------------------------------------------------
    # Table construction
    # ------------------------------------------------------------------

    def _storage_level(self, field_count: int) -> StorageLevel:
        for predicate, level in self.STORAGE_RULES:
            if predicate(field_count):
                return level
        raise AssertionError("storage rules must end with a catch-all")

    def _value_type(self, name: str, level: StorageLevel, default_length: int,
                    context: _InferenceContext) -> str:
        if level.wide_type:
            return level.wide_type
        observed = context.field_lengths.get(name, 0)
        if observed > ProcessingDefaults.MAX_VARCHAR_LENGTH:
            return "TEXT"
        return f"VARCHAR({max(observed, default_length)})"

    def _table_name(self, full_name: str, context: _InferenceContext) -> str:
        name = IdentifierUtils.shorten(full_name, self.max_identifier_length)
        owner = context.used_names.get(name)
        if owner is not None and owner != full_name:
            name = IdentifierUtils.disambiguate(name, full_name, self.max_identifier_length)
            self.logger.warning(f"Table name for '{full_name}' collided after shortening; using '{name}'")
        context.used_names[name] = full_name
        return name

    def _build_table(self, node: SkeletonNode, full_name: str, parent: Optional[InferredTable],
                     wrappers: Tuple[str, ...], context: _InferenceContext) -> InferredTable:
        name = self._table_name(full_name, context)
        fields = list(node.children.values())
        field_count = (len(fields) + len(node.attributes)
                       + sum(len(child.attributes) for child in fields if not child.has_children))
        level = self._storage_level(field_count)
        key_length = ProcessingDefaults.KEY_COLUMN_LENGTH

        # Root rows are told apart by insertion order; map variants reuse the same indexes
        order_constraint = "NOT NULL DEFAULT 0"
        if parent is None and not context.map_scoped:
            order_constraint += " PRIMARY KEY"
        synthetic = [ColumnDefinition(ORDER_COLUMN, "INT", order_constraint)]
        if context.map_scoped:
            synthetic.append(ColumnDefinition(MAP_TYPE_COLUMN, "VARCHAR(64)"))
        if name in context.row_id_tables:
            synthetic.append(ColumnDefinition(ROW_ID_COLUMN, "VARCHAR(64)"))

        columns: List[ColumnDefinition] = []
        if parent is not None:
            columns.append(ColumnDefinition(
                f"{INHERITED_KEY_PREFIX}{context.root_key}", f"VARCHAR({key_length})",
                comment=f"inherited from {parent.name}",
            ))
            columns.append(ColumnDefinition(PARENT_ORDER_COLUMN, "VARCHAR(64)",
                                            comment=f"{ORDER_COLUMN} of the {parent.name} row"))
            columns.extend(synthetic)

        for child in fields:
            is_key = parent is None and child.tag == context.root_key
            if is_key:
                columns.append(ColumnDefinition(child.tag, f"VARCHAR({key_length})"))
            else:
                columns.append(ColumnDefinition(
                    child.tag, self._value_type(child.tag, level, ProcessingDefaults.DEFAULT_VARCHAR_LENGTH, context)
                ))
            if not child.has_children:
                for attribute in child.attributes:
                    column = f"{ATTRIBUTE_PREFIX}_{child.tag}__{attribute}"
                    columns.append(ColumnDefinition(
                        column, self._value_type(column, level, ProcessingDefaults.DEFAULT_ATTRIBUTE_LENGTH, context)
                    ))
            if is_key:
                columns.extend(synthetic)
        for attribute in node.attributes:
            column = f"{ATTRIBUTE_PREFIX}{attribute}"
            columns.append(ColumnDefinition(
                column, self._value_type(column, level, ProcessingDefaults.DEFAULT_ATTRIBUTE_LENGTH, context)
            ))

        table = InferredTable(
            name=name,
            full_name=full_name,
            element_tag=node.tag,
            columns=columns,
            row_format=level.row_format,
            parent_name=parent.name if parent else None,
            wrapper_path=wrappers,
        )
        context.tables.append(table)

        for child in node.children.values():
            if child.has_children:
                self._walk_nested(child, full_name, table, (), context)
        return table

    def _walk_nested(self, node: SkeletonNode, parent_full_name: str, parent: InferredTable,
                     wrappers: Tuple[str, ...], context: _InferenceContext):
        full_name = f"{parent_full_name}__{node.tag}"
        only_child = next(iter(node.children.values())) if len(node.children) == 1 else None
        if only_child is not None and only_child.has_children and not node.attributes:
            # Pure wrapper, rows live one level down
            self._walk_nested(only_child, full_name, parent, wrappers + (node.tag,), context)
            return

        table = self._build_table(node, full_name, parent, wrappers, context)
        # Order indexes are unique per table and map type; root key values need not be
        association = InheritedAssociation(ORDER_COLUMN, PARENT_ORDER_COLUMN)

        sql = f"select * from {table.name} where {association.local_column} = '{ASSOCIATION_TOKEN}'"
        if context.map_scoped:
            sql += f" and {MAP_TYPE_COLUMN} = '{MAP_TYPE_TOKEN}'"
        sql += f" order by CAST({ORDER_COLUMN} AS UNSIGNED) ASC"

        parent.child_mappings.append(MappingNode(
            table_name=table.name,
            association=association,
            db_column=node.tag,
            xml_tag=node.tag,
            sql=sql,
            wrapper_path=wrappers,
            children=table.child_mappings,
        ))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write_outputs(self, result: InferenceResult, config_dir: Union[str, Path],
                      ddl_subdir: str = "sql") -> Tuple[Path, Path]:
        """
        Write ``<table>.json`` and ``<ddl_subdir>/<table>.sql`` for one result.

        Returns:
            (config path, DDL path)
        """
        config_dir = Path(config_dir)
        table_name = result.table_config.table_name
        config_path = config_dir / f"{table_name}.json"
        ddl_path = config_dir / ddl_subdir / f"{table_name}.sql"
        ddl_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w', encoding='utf-8') as file:
            json.dump(result.table_config.to_dict(), file, indent=4, ensure_ascii=False)
        with open(ddl_path, 'w', encoding='utf-8') as file:
            file.write(result.ddl_script)

        self.logger.info(f"Wrote table config {config_path} and DDL {ddl_path}")
        return config_path, ddl_path

    def apply(self, result: InferenceResult, database: DatabaseInterface) -> int:
        """Execute the inferred DDL; returns the number of statements run."""
        statements = result.ddl_statements
        for statement in statements:
            database.execute(statement)
        self.logger.info(f"Applied {len(statements)} DDL statements for '{result.table_config.table_name}'")
        return len(statements)

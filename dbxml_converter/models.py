"""
Core data models for the XML/relational conversion system.

This module contains the dataclasses describing a mapping configuration
(one Table Config per XML document, a tree of MappingNodes per nested table),
the forest of table names derived from those configs, and the processing
parameters and results shared by the exporter and the importer.
"""

import re

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .exceptions import ConfigurationError


# Placeholders substituted into mapping SQL
ASSOCIATION_TOKEN = "#associated_filed"
MAP_TYPE_TOKEN = "$mapType"

# Column naming conventions
ATTRIBUTE_PREFIX = "_attr_"
MULTI_VALUE_SEPARATOR = "!@#"
SYNTHETIC_PREFIX = "__"
ORDER_COLUMN = "__order_index"
INHERITED_KEY_PREFIX = "__parent_"
PARENT_ORDER_COLUMN = "__parent_order_index"
MAP_TYPE_COLUMN = "mapTp"
ROW_ID_COLUMN = "world__id"

ASSOCIATION_CHAIN = ">"
WRAPPER_SEPARATOR = ":"


@dataclass(frozen=True)
class DirectAssociation:
    """
    Child rows store the ancestor's value under the same column name.

    Attributes:
        field: Column read from the ancestor row and written to the child row
    """
    field: str

    @property
    def source_field(self) -> str:
        return self.field

    @property
    def local_column(self) -> str:
        return self.field

    def to_expression(self) -> str:
        return self.field


@dataclass(frozen=True)
class InheritedAssociation:
    """
    Child rows store the ancestor's ``ancestor_field`` under ``local_field``.

    Written as ``ancestor_field>local_field`` in a mapping file.
    """
    ancestor_field: str
    local_field: str

    @property
    def source_field(self) -> str:
        return self.ancestor_field

    @property
    def local_column(self) -> str:
        return self.local_field

    def to_expression(self) -> str:
        return f"{self.ancestor_field}{ASSOCIATION_CHAIN}{self.local_field}"


Association = Union[DirectAssociation, InheritedAssociation]


def parse_association(expression: str) -> Association:
    """
    Parse an ``associatedFiled`` expression.

    Args:
        expression: Either ``field`` or ``ancestor_field>local_field``

    Returns:
        DirectAssociation or InheritedAssociation

    Raises:
        ConfigurationError: If the expression is empty or malformed
    """
    text = (expression or "").strip()
    if not text:
        raise ConfigurationError("associatedFiled must not be empty")
    if ASSOCIATION_CHAIN not in text:
        return DirectAssociation(text)
    parts = [part.strip() for part in text.split(ASSOCIATION_CHAIN)]
    if len(parts) != 2 or not all(parts):
        raise ConfigurationError(f"Malformed associatedFiled expression: '{expression}'")
    return InheritedAssociation(parts[0], parts[1])


def _split_list(value: Union[str, List[str], None], separator: str) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return tuple(part.strip() for part in str(value).split(separator) if part.strip())


@dataclass
class MappingNode:
    """
    Mapping of one nested table onto an XML sub-tree.

    Attributes:
        table_name: Database table holding the rows
        association: How a row links to its ancestor row
        db_column: Parent-table column anchoring this sub-table
        xml_tag: Element name of a single row
        wrapper_path: Container elements between the parent row element and the rows
        fields: Optional allow list of leaf columns
        exclude_fields: Leaf columns never transferred
        sql: Query producing the rows of one ancestor (may contain the association
             and map-type tokens)
        children: Nested mappings, in document order
    """
    table_name: str
    association: Association
    db_column: str
    xml_tag: str
    sql: str
    wrapper_path: Tuple[str, ...] = ()
    fields: Tuple[str, ...] = ()
    exclude_fields: Tuple[str, ...] = ()
    children: List['MappingNode'] = field(default_factory=list)

    def __post_init__(self):
        """Validate mapping node."""
        self.validate()

    def validate(self):
        missing = [name for name, value in (
            ("table_name", self.table_name),
            ("associatedFiled", self.association),
            ("db_column", self.db_column),
            ("xml_tag", self.xml_tag),
            ("sql", self.sql),
        ) if not value]
        if missing:
            raise ConfigurationError(
                f"Mapping for table '{self.table_name or '?'}' is missing required fields: {', '.join(missing)}"
            )

    @property
    def reference_column(self) -> str:
        """Parent-table column whose position anchors this sub-table."""
        return self.wrapper_path[0] if self.wrapper_path else self.db_column

    def mapping_for_tag(self, tag: str) -> Optional['MappingNode']:
        return _mapping_for_tag(self.children, tag)

    def mapping_for_column(self, column: str) -> Optional['MappingNode']:
        return _mapping_for_column(self.children, column)

    def accepts_field(self, name: str) -> bool:
        if name in self.exclude_fields:
            return False
        return not self.fields or name in self.fields

    def walk(self) -> Iterator['MappingNode']:
        """Yield this mapping and every nested mapping, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def all_table_names(self) -> List[str]:
        return [node.table_name for node in self.walk()]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MappingNode':
        if not isinstance(data, dict):
            raise ConfigurationError(f"Mapping entry must be an object, got {type(data).__name__}")
        return cls(
            table_name=data.get("table_name", ""),
            association=parse_association(data.get("associatedFiled", "")),
            db_column=data.get("db_column", ""),
            xml_tag=data.get("xml_tag", ""),
            sql=data.get("sql", ""),
            wrapper_path=_split_list(data.get("addDataNode"), WRAPPER_SEPARATOR),
            fields=_split_list(data.get("fileds"), ","),
            exclude_fields=_split_list(data.get("exclude_fileds"), ","),
            children=[cls.from_dict(child) for child in data.get("list") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "associatedFiled": self.association.to_expression(),
            "db_column": self.db_column,
            "xml_tag": self.xml_tag,
            "addDataNode": WRAPPER_SEPARATOR.join(self.wrapper_path),
            "fileds": ",".join(self.fields),
            "exclude_fileds": ",".join(self.exclude_fields),
            "sql": self.sql,
            "list": [child.to_dict() for child in self.children],
        }


def _mapping_for_tag(mappings: List[MappingNode], tag: str) -> Optional[MappingNode]:
    for mapping in mappings:
        if mapping.wrapper_path:
            if mapping.wrapper_path[0] == tag:
                return mapping
        elif mapping.xml_tag == tag:
            return mapping
    return None


def _mapping_for_column(mappings: List[MappingNode], column: str) -> Optional[MappingNode]:
    for mapping in mappings:
        if mapping.reference_column == column:
            return mapping
    return None


def _parse_root_attr(value: Union[str, Dict[str, str], None]) -> Optional[Tuple[str, str]]:
    if not value:
        return None
    if isinstance(value, dict):
        key, attr_value = next(iter(value.items()))
        return str(key), str(attr_value)
    key, sep, attr_value = str(value).partition("=")
    if not sep or not key.strip():
        raise ConfigurationError(f"xml_root_attr must look like 'key=value', got '{value}'")
    return key.strip(), attr_value.strip()


@dataclass
class TableConfig:
    """
    Top-level mapping of one XML document onto a root table and its sub-tables.

    Attributes:
        table_name: Root table
        xml_root_tag: Document element name
        sql: Root query, paged by the exporter
        xml_item_tag: Element name of one root row; empty when the document root
                      itself is the single row
        xml_root_attr: Optional (name, value) attribute put on the document element
        real_table_name: Export file stem when it differs from the table name
        file_path: Default location of the XML document
        children: Top-level sub-table mappings
        order_column: When set, rows get a per-table insertion counter
        root_key: When set, every descendant row inherits ``__parent_<root_key>``
    """
    table_name: str
    xml_root_tag: str
    sql: str
    xml_item_tag: str = ""
    xml_root_attr: Optional[Tuple[str, str]] = None
    real_table_name: str = ""
    file_path: str = ""
    children: List[MappingNode] = field(default_factory=list)
    order_column: str = ""
    root_key: str = ""
    source_path: Optional[str] = None

    def __post_init__(self):
        """Validate table configuration."""
        self.validate()

    def validate(self):
        missing = [name for name, value in (
            ("table_name", self.table_name),
            ("xml_root_tag", self.xml_root_tag),
            ("sql", self.sql),
        ) if not value]
        if missing:
            raise ConfigurationError(
                f"Table config '{self.table_name or '?'}' is missing required fields: {', '.join(missing)}",
                source_file=self.source_path,
            )
        seen = set()
        for name in [self.table_name] + [n.table_name for child in self.children for n in child.walk()]:
            if name in seen:
                raise ConfigurationError(
                    f"Table '{name}' appears more than once in config '{self.table_name}'",
                    source_file=self.source_path,
                )
            seen.add(name)

    @property
    def is_map_scoped(self) -> bool:
        """Root queries filtered by a map-type variant run live sub-queries per row."""
        return MAP_TYPE_TOKEN in self.sql

    @property
    def export_name(self) -> str:
        return self.real_table_name or self.table_name

    @property
    def inherited_key_column(self) -> Optional[str]:
        return f"{INHERITED_KEY_PREFIX}{self.root_key}" if self.root_key else None

    def mapping_for_tag(self, tag: str) -> Optional[MappingNode]:
        return _mapping_for_tag(self.children, tag)

    def mapping_for_column(self, column: str) -> Optional[MappingNode]:
        return _mapping_for_column(self.children, column)

    def walk_mappings(self) -> Iterator[MappingNode]:
        for child in self.children:
            yield from child.walk()

    def all_table_names(self) -> List[str]:
        names = [self.table_name]
        for mapping in self.walk_mappings():
            if mapping.table_name not in names:
                names.append(mapping.table_name)
        return names

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_path: Optional[str] = None) -> 'TableConfig':
        """
        Build a TableConfig from the parsed JSON/YAML layout.

        Raises:
            ConfigurationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Table config must be an object", source_file=source_path)
        try:
            children = [MappingNode.from_dict(child) for child in data.get("list") or []]
            root_attr = _parse_root_attr(data.get("xml_root_attr"))
        except ConfigurationError as e:
            raise ConfigurationError(f"{e} (in {source_path or data.get('table_name', '?')})",
                                     source_file=source_path) from e
        return cls(
            table_name=data.get("table_name", ""),
            xml_root_tag=data.get("xml_root_tag", ""),
            sql=data.get("sql", ""),
            xml_item_tag=data.get("xml_item_tag") or "",
            xml_root_attr=root_attr,
            real_table_name=data.get("real_table_name") or "",
            file_path=data.get("file_path") or "",
            children=children,
            order_column=data.get("order_column") or "",
            root_key=data.get("root_key") or "",
            source_path=source_path,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "file_path": self.file_path,
            "table_name": self.table_name,
            "real_table_name": self.real_table_name,
            "xml_root_tag": self.xml_root_tag,
            "xml_root_attr": "=".join(self.xml_root_attr) if self.xml_root_attr else "",
            "xml_item_tag": self.xml_item_tag,
            "sql": self.sql,
            "list": [child.to_dict() for child in self.children],
        }
        if self.order_column:
            data["order_column"] = self.order_column
        if self.root_key:
            data["root_key"] = self.root_key
        return data


@dataclass(eq=False)
class TableNode:
    """
    One table in the forest of table-name relationships.

    Attributes:
        table_name: Table represented by this node
        parent: Owning table node, None for roots
        children: Child table nodes in mapping order
    """
    table_name: str
    parent: Optional['TableNode'] = None
    children: List['TableNode'] = field(default_factory=list)

    def add_child(self, child: 'TableNode') -> None:
        child.parent = self
        if child not in self.children:
            self.children.append(child)

    def root(self) -> 'TableNode':
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def walk(self) -> Iterator['TableNode']:
        yield self
        for child in self.children:
            yield from child.walk()

    def __repr__(self):
        return f"TableNode({self.table_name!r}, children={len(self.children)})"


@dataclass
class ProcessingConfig:
    """
    Tuning parameters for export and import jobs.

    Attributes:
        page_size: Root rows per export page
        export_workers: Threads building export pages
        subtree_workers: Threads populating sub-trees below a page
        async_depth: Nesting depth from which sub-trees are built inline
        import_batch_size: Rows per insert transaction
        max_identifier_length: Longest table name written by schema inference
        row_id_tables: Tables that receive a synthetic UUID column on import
    """
    page_size: int = 1000
    export_workers: int = 16
    subtree_workers: int = 4
    async_depth: int = 2
    import_batch_size: int = 1000
    max_identifier_length: int = 60
    row_id_tables: Tuple[str, ...] = ()

    def __post_init__(self):
        """Validate processing configuration."""
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")
        if self.export_workers <= 0:
            raise ValueError("export_workers must be positive")
        if self.subtree_workers <= 0:
            raise ValueError("subtree_workers must be positive")
        if self.async_depth < 0:
            raise ValueError("async_depth must not be negative")
        if self.import_batch_size <= 0:
            raise ValueError("import_batch_size must be positive")
        if self.max_identifier_length <= 0:
            raise ValueError("max_identifier_length must be positive")
        self.row_id_tables = tuple(self.row_id_tables)


@dataclass
class ProcessingResult:
    """
    Results from an export, import or inference job.

    Attributes:
        records_processed: Total number of records handled
        records_successful: Number of records written
        records_failed: Number of failed records
        processing_time_seconds: Total processing time
        errors: List of error messages encountered
        performance_metrics: Dictionary of performance metrics
        output_path: File written by the job, if any
    """
    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0
    processing_time_seconds: float = 0.0
    errors: List[str] = None
    performance_metrics: Dict[str, Any] = None
    output_path: Optional[str] = None

    def __post_init__(self):
        """Initialize default values for mutable fields."""
        if self.errors is None:
            self.errors = []
        if self.performance_metrics is None:
            self.performance_metrics = {}

    @property
    def success_rate(self) -> float:
        """Calculate the success rate as a percentage."""
        if self.records_processed == 0:
            return 0.0
        return (self.records_successful / self.records_processed) * 100.0


_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def is_valid_table_name(name: str) -> bool:
    return bool(name) and bool(_TABLE_NAME_PATTERN.match(name))

"""
Table forest construction.

Every Table Config describes one tree of tables. Across a configuration
directory those trees form a forest; the forest answers "which root table
(and therefore which config file) owns this nested table?".
"""

import logging

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..exceptions import ConfigurationError
from ..models import MappingNode, TableConfig, TableNode


@dataclass
class TableForest:
    """
    Result of building a forest.

    Attributes:
        roots: Nodes never referenced as a child, in first-seen order
        index: Every node keyed by table name
    """
    roots: List[TableNode] = field(default_factory=list)
    index: Dict[str, TableNode] = field(default_factory=dict)

    def get(self, table_name: str) -> TableNode:
        try:
            return self.index[table_name]
        except KeyError:
            raise ConfigurationError(f"Table '{table_name}' is not named by any table config") from None

    def root_table_of(self, table_name: str) -> str:
        """Walk parent links up to the ultimate root table."""
        return self.get(table_name).root().table_name


class TableForestBuilder:
    """Builds TableNode forests from Table Configs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def build_forest(self, configs: Iterable[TableConfig]) -> TableForest:
        """
        Build one forest from several Table Configs.

        Nodes are shared by table name, so a table mentioned by several configs
        appears once; any node that is some table's child is not a root.

        Args:
            configs: Loaded Table Configs

        Returns:
            TableForest with roots and a name index
        """
        index: Dict[str, TableNode] = {}
        children = set()

        for config in configs:
            root = self._node(index, config.table_name)
            for mapping in config.children:
                self._attach(index, children, root, mapping)

        forest = TableForest(
            roots=[node for name, node in index.items() if name not in children],
            index=index,
        )
        self.logger.debug(f"Built table forest with {len(forest.roots)} roots and {len(index)} tables")
        return forest

    def build_one_forest(self, config: TableConfig) -> TableForest:
        return self.build_forest([config])

    def _node(self, index: Dict[str, TableNode], table_name: str) -> TableNode:
        node = index.get(table_name)
        if node is None:
            node = TableNode(table_name)
            index[table_name] = node
        return node

    def _attach(self, index, children, parent: TableNode, mapping: MappingNode):
        node = self._node(index, mapping.table_name)
        if node.parent is not None and node.parent is not parent:
            self.logger.warning(
                f"Table '{mapping.table_name}' is claimed by both '{node.parent.table_name}' "
                f"and '{parent.table_name}'; keeping the latter"
            )
            node.parent.children.remove(node)
        parent.add_child(node)
        children.add(mapping.table_name)
        for child in mapping.children:
            self._attach(index, children, node, child)

"""
Unit tests for TableForestBuilder.
"""

import logging

import pytest

from dbxml_converter.exceptions import ConfigurationError
from dbxml_converter.mapping.forest_builder import TableForestBuilder
from dbxml_converter.models import TableConfig


def _mapping(table_name, children=()):
    return {
        "table_name": table_name,
        "associatedFiled": "id",
        "db_column": table_name,
        "xml_tag": table_name,
        "sql": f"select * from {table_name} where id = '#associated_filed'",
        "list": list(children),
    }


def _config(table_name, children=()):
    return TableConfig.from_dict({
        "table_name": table_name,
        "xml_root_tag": table_name,
        "sql": f"select * from {table_name}",
        "list": list(children),
    })


@pytest.fixture
def builder():
    return TableForestBuilder()


def test_single_config_forest(builder):
    config = _config("world", [_mapping("region", [_mapping("town")]), _mapping("weather")])
    forest = builder.build_one_forest(config)

    assert [root.table_name for root in forest.roots] == ["world"]
    world = forest.get("world")
    assert [child.table_name for child in world.children] == ["region", "weather"]
    assert forest.get("town").parent is forest.get("region")
    assert forest.root_table_of("town") == "world"
    assert forest.root_table_of("world") == "world"


def test_roots_across_configs(builder):
    forest = builder.build_forest([
        _config("world", [_mapping("region")]),
        _config("item_list", [_mapping("item_effect")]),
    ])

    assert [root.table_name for root in forest.roots] == ["world", "item_list"]
    assert forest.root_table_of("item_effect") == "item_list"
    assert len(forest.index) == 4


def test_config_referenced_by_another_is_not_a_root(builder):
    forest = builder.build_forest([
        _config("region"),
        _config("world", [_mapping("region", [_mapping("town")])]),
    ])

    assert [root.table_name for root in forest.roots] == ["world"]
    assert forest.root_table_of("town") == "world"
    assert forest.root_table_of("region") == "world"


def test_table_claimed_twice_keeps_last_parent(builder, caplog):
    with caplog.at_level(logging.WARNING):
        forest = builder.build_forest([
            _config("world", [_mapping("shared")]),
            _config("item_list", [_mapping("shared")]),
        ])

    assert forest.root_table_of("shared") == "item_list"
    assert forest.get("world").children == []
    assert "claimed by both" in caplog.text


def test_unknown_table(builder):
    forest = builder.build_one_forest(_config("world"))
    with pytest.raises(ConfigurationError, match="not named by any table config"):
        forest.root_table_of("missing")


def test_table_node_walk_and_repr(builder):
    forest = builder.build_one_forest(_config("world", [_mapping("region", [_mapping("town")])]))
    assert [node.table_name for node in forest.get("world").walk()] == ["world", "region", "town"]
    assert repr(forest.get("region")) == "TableNode('region', children=1)"

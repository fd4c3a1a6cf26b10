"""
Unit tests for SubTablePreloader.
"""

from unittest.mock import Mock

import pytest

from dbxml_converter.exceptions import DatabaseOperationError, ExportError
from dbxml_converter.models import TableConfig
from dbxml_converter.processing.sub_table_preloader import SubTablePreloader


@pytest.fixture
def table_config():
    return TableConfig.from_dict({
        "table_name": "monster_list",
        "xml_root_tag": "monsters",
        "xml_item_tag": "monster",
        "sql": "select * from monster_list",
        "list": [{
            "table_name": "drop_item",
            "associatedFiled": "id>__parent_id",
            "db_column": "item",
            "xml_tag": "item",
            "sql": "select * from drop_item where __parent_id = '#associated_filed' "
                   "order by CAST(__order_index AS UNSIGNED) ASC",
            "list": [{
                "table_name": "drop_effect",
                "associatedFiled": "__order_index>__parent_order_index",
                "db_column": "effect",
                "xml_tag": "effect",
                "sql": "select * from drop_effect where __parent_order_index = '#associated_filed' "
                       "order by name desc",
            }],
        }],
    })


def _database(rows_by_table):
    database = Mock()

    def query(sql):
        for table_name, rows in rows_by_table.items():
            if f"from {table_name} " in sql:
                return [dict(row) for row in rows]
        return []

    database.query.side_effect = query
    return database


def test_preload_issues_one_query_per_sub_table(table_config):
    database = _database({"drop_item": [], "drop_effect": []})
    preloader = SubTablePreloader(database)
    preloader.preload(table_config)

    issued = [call.args[0] for call in database.query.call_args_list]
    assert issued == [
        "select * from drop_item where 1=1 order by CAST(__order_index AS UNSIGNED) ASC",
        "select * from drop_effect where 1=1 order by name desc",
    ]
    assert preloader.is_loaded("drop_item")
    assert preloader.is_loaded("drop_effect")


def test_groups_are_sorted_numerically(table_config):
    database = _database({
        "drop_item": [
            {"__parent_id": "1", "__order_index": "10", "itemId": "c"},
            {"__parent_id": "1", "__order_index": "9", "itemId": "b"},
            {"__parent_id": "2", "__order_index": "3", "itemId": "x"},
            {"__parent_id": "1", "__order_index": None, "itemId": "a"},
            {"__parent_id": None, "__order_index": "1", "itemId": "orphan"},
        ],
        "drop_effect": [],
    })
    preloader = SubTablePreloader(database)
    preloader.preload(table_config)

    assert [row["itemId"] for row in preloader.get("drop_item", "1")] == ["a", "b", "c"]
    assert [row["itemId"] for row in preloader.get("drop_item", 2)] == ["x"]
    assert preloader.get("drop_item", "3") == []
    assert preloader.get("drop_item", None) == []


def test_descending_text_sort_is_stable(table_config):
    database = _database({
        "drop_item": [],
        "drop_effect": [
            {"__parent_order_index": "0", "name": "b", "seq": 1},
            {"__parent_order_index": "0", "name": "c", "seq": 2},
            {"__parent_order_index": "0", "name": "b", "seq": 3},
        ],
    })
    preloader = SubTablePreloader(database)
    preloader.preload(table_config)

    assert [row["seq"] for row in preloader.get("drop_effect", 0)] == [2, 1, 3]


def test_get_returns_a_new_list(table_config):
    database = _database({"drop_item": [{"__parent_id": "1", "__order_index": "0"}], "drop_effect": []})
    preloader = SubTablePreloader(database)
    preloader.preload(table_config)

    preloader.get("drop_item", "1").clear()
    assert len(preloader.get("drop_item", "1")) == 1


def test_query_failure_raises_export_error(table_config):
    database = Mock()
    database.query.side_effect = DatabaseOperationError("table missing")
    preloader = SubTablePreloader(database)

    with pytest.raises(ExportError, match="drop_item"):
        preloader.preload(table_config)


def test_clear(table_config):
    preloader = SubTablePreloader(_database({"drop_item": [], "drop_effect": []}))
    preloader.preload(table_config)
    preloader.clear()
    assert not preloader.is_loaded("drop_item")

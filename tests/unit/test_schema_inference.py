"""
Unit tests for SchemaInferenceEngine.
"""

import json

from unittest.mock import Mock

import pytest

from lxml import etree

from dbxml_converter.exceptions import ConfigurationError, SchemaInferenceError
from dbxml_converter.mapping.schema_inference import SchemaInferenceEngine
from dbxml_converter.models import InheritedAssociation, TableConfig


@pytest.fixture
def engine():
    return SchemaInferenceEngine()


def _wide_document(field_count, value="x"):
    fields = "".join(f"<f{index}>{value}</f{index}>" for index in range(field_count))
    return etree.fromstring(f"<rows><row>{fields}</row></rows>")


class TestListDocuments:

    def test_tables_and_config(self, engine, monster_list_file):
        result = engine.infer_file(monster_list_file)
        config = result.table_config

        assert [table.name for table in result.tables] == [
            "monster_list",
            "monster_list__drops__item",
            "monster_list__drops__item__effects__effect",
            "monster_list__skills__skill",
        ]
        assert config.table_name == "monster_list"
        assert config.xml_root_tag == "monsters"
        assert config.xml_item_tag == "monster"
        assert config.xml_root_attr == ("version", "2")
        assert config.root_key == "id"
        assert config.order_column == "__order_index"
        assert config.file_path == str(monster_list_file)
        assert config.sql == "select * from monster_list order by CAST(__order_index AS UNSIGNED) ASC"

    def test_root_columns_follow_document_order(self, engine, monster_list_file):
        table = engine.infer_file(monster_list_file).table("monster_list")

        assert table.column_names == [
            "id", "__order_index", "name", "level", "_attr__level__unit", "tag", "drops", "skills",
        ]
        columns = {column.name: column for column in table.columns}
        assert columns["id"].sql_type == "VARCHAR(255)"
        assert columns["id"].constraint == ""
        assert columns["__order_index"].constraint == "NOT NULL DEFAULT 0 PRIMARY KEY"
        assert columns["name"].sql_type == "VARCHAR(64)"
        assert columns["_attr__level__unit"].sql_type == "VARCHAR(128)"
        assert table.row_format == "DYNAMIC"

    def test_wrappers_collapse_into_mapping(self, engine, monster_list_file):
        config = engine.infer_file(monster_list_file).table_config
        drops, skills = config.children

        assert drops.table_name == "monster_list__drops__item"
        assert drops.wrapper_path == ("drops",)
        assert drops.xml_tag == "item"
        assert drops.reference_column == "drops"
        assert drops.association == InheritedAssociation("__order_index", "__parent_order_index")
        assert drops.sql == ("select * from monster_list__drops__item "
                             "where __parent_order_index = '#associated_filed' "
                             "order by CAST(__order_index AS UNSIGNED) ASC")
        assert skills.wrapper_path == ("skills",)

        effect = drops.children[0]
        assert effect.wrapper_path == ("effects",)
        assert effect.association == InheritedAssociation("__order_index", "__parent_order_index")

    def test_nested_columns(self, engine, monster_list_file):
        result = engine.infer_file(monster_list_file)

        assert result.table("monster_list__drops__item").column_names == [
            "__parent_id", "__parent_order_index", "__order_index", "itemId", "rate", "effects",
        ]
        assert result.table("monster_list__drops__item__effects__effect").column_names == [
            "__parent_id", "__parent_order_index", "__order_index", "kind",
        ]

    def test_ddl(self, engine, monster_list_file):
        statements = engine.infer_file(monster_list_file).ddl_statements

        assert statements[0] == "DROP TABLE IF EXISTS `monster_list`;"
        assert statements[1].startswith(
            "CREATE TABLE `monster_list` (\n  `id` VARCHAR(255),\n  `__order_index` INT NOT NULL DEFAULT 0 PRIMARY KEY,"
        )
        assert statements[1].endswith("ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 ROW_FORMAT=DYNAMIC;")
        assert "`__parent_id` VARCHAR(255) COMMENT 'inherited from monster_list'" in statements[3]
        assert len(statements) == 8


class TestSingleRowDocuments:

    def test_detected_from_distinct_root_children(self, engine, game_settings_file):
        result = engine.infer_file(game_settings_file)
        config = result.table_config
        root = result.table("game_settings")

        assert config.xml_item_tag == ""
        assert config.root_key == "title"
        assert root.columns[0].name == "title"
        assert root.columns[0].constraint == ""
        assert "_attr__difficulty__mode" in root.column_names
        assert config.children[0].table_name == "game_settings__levels__level"

    def test_forced_single_row(self, engine):
        root = etree.fromstring("<rows><row>1</row><row>2</row></rows>")
        result = engine.infer(root, "rows", single_row=True)
        assert result.table_config.xml_item_tag == ""
        assert result.table_config.root_key == "row"

    def test_forced_single_row_needs_a_leaf(self, engine):
        root = etree.fromstring("<rows><row><id>1</id></row><row><id>2</id></row></rows>")
        with pytest.raises(SchemaInferenceError, match="no leaf child"):
            engine.infer(root, "rows", single_row=True)


class TestRootKey:

    NPCS = ("<npcs>"
            "<npc><stats><hp>1</hp><mp>2</mp></stats><name>a</name></npc>"
            "<npc><stats><hp>3</hp><mp>4</mp></stats><name>b</name></npc>"
            "</npcs>")

    def test_key_is_first_leaf_not_leading_container(self, engine):
        result = engine.infer(etree.fromstring(self.NPCS), "npcs")

        assert result.table_config.root_key == "name"
        assert result.table("npcs").column_names == ["stats", "name", "__order_index"]
        stats = result.table_config.children[0]
        assert stats.association == InheritedAssociation("__order_index", "__parent_order_index")
        assert result.table("npcs__stats").column_names == [
            "__parent_name", "__parent_order_index", "__order_index", "hp", "mp",
        ]

    def test_key_attributes_get_columns(self, engine):
        root = etree.fromstring("<rows><row><id kind=\"n\">1</id><v>2</v></row></rows>")
        table = engine.infer(root, "t").table("t")
        assert table.column_names == ["id", "_attr__id__kind", "__order_index", "v"]

    def test_rows_with_only_containers_fail(self, engine):
        root = etree.fromstring("<rows><row><a><b>1</b><c>2</c></a></row></rows>")
        with pytest.raises(SchemaInferenceError, match="no leaf child"):
            engine.infer(root, "t")


class TestColumnSizing:

    def test_narrow_tables_use_varchar(self, engine):
        table = engine.infer(_wide_document(50), "narrow").table("narrow")
        assert table.columns[2].sql_type == "VARCHAR(64)"
        assert table.row_format == "DYNAMIC"

    def test_wide_tables_use_text(self, engine):
        table = engine.infer(_wide_document(51), "wide").table("wide")
        assert table.columns[0].sql_type == "VARCHAR(255)"
        assert {column.sql_type for column in table.columns[2:]} == {"TEXT"}
        assert table.row_format == "DYNAMIC"

    def test_very_wide_tables_use_compressed_mediumtext(self, engine):
        table = engine.infer(_wide_document(101), "very_wide").table("very_wide")
        assert {column.sql_type for column in table.columns[2:]} == {"MEDIUMTEXT"}
        assert table.row_format == "COMPRESSED"

    def test_long_values_become_text(self, engine):
        root = etree.fromstring(f"<rows><row><id>1</id><story>{'a' * 300}</story>"
                                f"<motto>{'b' * 80}</motto></row></rows>")
        columns = {column.name: column.sql_type for column in engine.infer(root, "t").table("t").columns}
        assert columns["story"] == "TEXT"
        assert columns["motto"] == "VARCHAR(80)"


class TestOptions:

    def test_map_scoped(self, engine, monster_list_file):
        result = engine.infer_file(monster_list_file, map_scoped=True)
        config = result.table_config

        assert config.is_map_scoped
        assert config.sql == ("select * from monster_list where mapTp = '$mapType' "
                              "order by CAST(__order_index AS UNSIGNED) ASC")
        assert "and mapTp = '$mapType'" in config.children[0].sql
        assert all("mapTp" in table.column_names for table in result.tables)
        # Variants share key values and order indexes
        assert result.table("monster_list").columns[0].constraint == ""
        assert result.table("monster_list").columns[1].constraint == "NOT NULL DEFAULT 0"

    def test_row_id_tables(self, monster_list_file):
        engine = SchemaInferenceEngine(row_id_tables=["monster_list__skills__skill"])
        result = engine.infer_file(monster_list_file)
        assert "world__id" in result.table("monster_list__skills__skill").column_names
        assert "world__id" not in result.table("monster_list").column_names

    def test_rename(self, engine, monster_list_file):
        config = engine.infer_file(monster_list_file, new_table_name="beasts").table_config
        assert config.table_name == "beasts"
        assert config.real_table_name == "monster_list"
        assert config.export_name == "monster_list"
        assert config.children[0].table_name == "beasts__drops__item"

    def test_names_shortened_to_identifier_limit(self, monster_list_file):
        result = SchemaInferenceEngine(max_identifier_length=20).infer_file(monster_list_file)
        names = [table.name for table in result.tables]

        assert all(len(name) <= 20 for name in names)
        assert len(set(names)) == len(names)
        assert result.table_config.all_table_names() == names

    def test_colliding_short_names_are_disambiguated(self):
        root = etree.fromstring(
            "<root><row><id>1</id>"
            "<alpha_one_x><v>1</v><w>2</w></alpha_one_x>"
            "<alpha_oak_x><v>1</v><w>2</w></alpha_oak_x>"
            "</row></root>"
        )
        result = SchemaInferenceEngine(max_identifier_length=12).infer(root, "t")
        first, second = [table.name for table in result.tables[1:]]

        assert first == "t__a_o_x"
        assert second != first
        assert second.startswith("t__a_o_")
        assert len(second) <= 12


class TestFailures:

    def test_empty_root(self, engine):
        with pytest.raises(ConfigurationError, match="no child elements"):
            engine.infer(etree.fromstring("<root/>"), "t")

    def test_row_without_fields(self, engine):
        with pytest.raises(SchemaInferenceError, match="no child elements"):
            engine.infer(etree.fromstring("<root><row>text</row><row/></root>"), "t")

    def test_batch_collects_errors_and_renames_duplicate_stems(self, engine, tmp_path, monster_list_file):
        first = tmp_path / "east" / "monster_list.xml"
        second = tmp_path / "west" / "monster_list.xml"
        broken = tmp_path / "broken.xml"
        for path in (first, second):
            path.parent.mkdir()
            path.write_bytes(monster_list_file.read_bytes())
        broken.write_text("<root><unclosed></root>", encoding="utf-8")

        batch = engine.infer_files([first, second, broken])

        assert [result.table_config.table_name for result in batch.results] == [
            "east_monster_list", "west_monster_list",
        ]
        assert list(batch.errors) == [str(broken)]
        assert not batch.success


class TestOutputs:

    def test_write_outputs(self, engine, monster_list_file, tmp_path):
        result = engine.infer_file(monster_list_file)
        config_path, ddl_path = engine.write_outputs(result, tmp_path / "conf")

        assert config_path == tmp_path / "conf" / "monster_list.json"
        assert ddl_path == tmp_path / "conf" / "sql" / "monster_list.sql"
        reloaded = TableConfig.from_dict(json.loads(config_path.read_text(encoding="utf-8")))
        assert reloaded.to_dict() == result.table_config.to_dict()
        assert ddl_path.read_text(encoding="utf-8") == result.ddl_script

    def test_apply_runs_every_statement(self, engine, monster_list_file):
        result = engine.infer_file(monster_list_file)
        database = Mock()

        assert engine.apply(result, database) == 8
        assert database.execute.call_count == 8
        database.execute.assert_any_call("DROP TABLE IF EXISTS `monster_list__skills__skill`;")

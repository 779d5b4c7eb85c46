"""
@description 字段映射测试
@responsibility 验证字段类型映射、列名清洗、值转换和列默认设置
"""

import pytest

from app.services.field_mapper import (
    FieldMapping,
    create_column_settings,
    generate_field_mappings,
    get_transformation_rule,
    map_description_to_update,
    map_field_type,
    sanitize_column_name,
    transform_custom_field_values,
    transform_standard_fields,
)


class TestMapFieldType:
    """测试字段类型映射"""

    @pytest.mark.parametrize(
        "clickup_type,monday_type",
        [
            ("text", "text"),
            ("short_text", "text"),
            ("textarea", "long_text"),
            ("number", "numbers"),
            ("currency", "numbers"),
            ("date", "date"),
            ("checkbox", "checkbox"),
            ("drop_down", "status"),
            ("labels", "tags"),
            ("email", "email"),
            ("phone", "phone"),
            ("url", "link"),
            ("users", "people"),
            ("rating", "rating"),
            ("location", "location"),
        ],
    )
    def test_known_types(self, clickup_type, monday_type):
        assert map_field_type(clickup_type) == monday_type

    def test_case_insensitive(self):
        assert map_field_type("DROP_DOWN") == "status"

    @pytest.mark.parametrize("clickup_type", ["formula", "", None])
    def test_unknown_falls_back_to_text(self, clickup_type):
        assert map_field_type(clickup_type) == "text"


class TestSanitizeColumnName:
    """测试列名清洗"""

    def test_removes_special_characters(self):
        assert sanitize_column_name("Budget ($) #1!") == "Budget  1"

    def test_only_plain_spaces_kept(self):
        """制表符、换行和非 ASCII 空白都会被移除"""
        assert sanitize_column_name("Due\tDate\nNext") == "DueDateNext"
        assert sanitize_column_name("Owner\u00a0Name") == "OwnerName"
        assert sanitize_column_name("Owner Name") == "Owner Name"

    def test_keeps_dash_and_underscore(self):
        assert sanitize_column_name("due-date_v2") == "due-date_v2"

    def test_truncates(self):
        assert len(sanitize_column_name("a" * 300)) == 255

    def test_only_special_characters(self):
        assert sanitize_column_name("€€€") == ""


class TestTransformations:
    """测试值转换"""

    def test_drop_down(self):
        transform = get_transformation_rule("drop_down")
        assert transform({"name": "In Review"}) == {"label": "In Review"}
        assert transform("Open") == {"label": "Open"}
        assert transform(None) is None

    def test_checkbox(self):
        transform = get_transformation_rule("checkbox")
        assert transform(True) == {"checked": "true"}
        assert transform("true") == {"checked": "true"}
        assert transform(False) == {"checked": "false"}

    def test_date(self):
        transform = get_transformation_rule("date")
        assert transform("1700000000000") == {"date": "2023-11-14"}
        assert transform("not-a-date") is None

    def test_number_non_numeric_is_none(self):
        """非数字值转换为 None（不写入该列）"""
        transform = get_transformation_rule("number")
        assert transform("12.5") == 12.5
        assert transform("abc") is None

    def test_users_and_labels(self):
        assert get_transformation_rule("users")([{"id": 1}, {"id": 2}]) == {
            "personsAndTeams": [{"id": 1, "kind": "person"}, {"id": 2, "kind": "person"}]
        }
        assert get_transformation_rule("labels")([{"id": "l1"}, {"name": "x"}]) == {
            "tag_ids": ["l1", "x"]
        }

    def test_contact_types(self):
        assert get_transformation_rule("email")("a@b.io") == {"email": "a@b.io", "text": "a@b.io"}
        assert get_transformation_rule("phone")("+15550100") == {
            "phone": "+15550100",
            "countryShortName": "US",
        }
        assert get_transformation_rule("url")("https://x.io") == {
            "url": "https://x.io",
            "text": "https://x.io",
        }

    def test_rating_and_location(self):
        assert get_transformation_rule("rating")("4") == {"rating": 4}
        assert get_transformation_rule("location")(
            {"location": {"lat": 1.5, "lng": 2.5}, "formatted_address": "Main St"}
        ) == {"address": "Main St", "lat": 1.5, "lng": 2.5}

    def test_text_has_no_transform(self):
        assert get_transformation_rule("text") is None
        assert get_transformation_rule("formula") is None


class TestCustomFieldValues:
    """测试任务自定义字段值转换"""

    def test_transform_mapped_fields(self):
        mappings = [
            FieldMapping("Priority", "drop_down", "status_1", "status"),
            FieldMapping("Budget", "number", "numbers_1", "numbers"),
            FieldMapping("Notes", "text", "text_1", "text"),
        ]
        task = {
            "custom_fields": [
                {
                    "name": "Priority",
                    "type": "drop_down",
                    "value": 1,
                    "type_config": {
                        "options": [
                            {"id": "o0", "name": "Low", "orderindex": 0},
                            {"id": "o1", "name": "High", "orderindex": 1},
                        ]
                    },
                },
                {"name": "Budget", "type": "number", "value": "abc"},
                {"name": "Notes", "type": "text", "value": "hello"},
                {"name": "Unmapped", "type": "text", "value": "ignored"},
            ]
        }

        values = transform_custom_field_values(task, mappings)

        assert values == {"status_1": {"label": "High"}, "text_1": "hello"}

    def test_empty_custom_fields(self):
        assert transform_custom_field_values({}, []) == {}


class TestStandardFields:
    """测试内置字段转换"""

    def test_all_fields(self):
        task = {
            "name": "发布 1.0",
            "status": {"status": "in progress"},
            "due_date": "1700000000000",
            "assignees": [{"id": 11}],
            "priority": {"id": "2", "priority": "high"},
            "tags": [{"name": "release"}],
        }

        name, values = transform_standard_fields(task)

        assert name == "发布 1.0"
        assert values == {
            "status": {"label": "in progress"},
            "due_date": {"date": "2023-11-14"},
            "people": {"personsAndTeams": [{"id": 11, "kind": "person"}]},
            "priority": {"label": "High"},
            "tags": {"tag_ids": ["release"]},
        }

    def test_preserve_flags(self):
        task = {"name": "x", "due_date": "1700000000000", "assignees": [{"id": 1}]}
        _, values = transform_standard_fields(
            task, preserve_assignees=False, preserve_dates=False
        )
        assert values == {}

    def test_unknown_priority_defaults_normal(self):
        _, values = transform_standard_fields({"name": "x", "priority": {"id": "9"}})
        assert values["priority"] == {"label": "Normal"}


class TestColumnSettings:
    """测试建列默认设置"""

    def test_drop_down_labels(self):
        settings = create_column_settings(
            {
                "type": "drop_down",
                "type_config": {
                    "options": [{"name": "Open", "color": "#ff0000"}, {"name": "Closed"}]
                },
            }
        )
        assert settings["labels"] == {"0": "Open", "1": "Closed"}
        assert settings["labels_colors"]["0"] == {"color": "#ff0000", "border": "#ff0000"}
        assert settings["labels_colors"]["1"]["color"] == "#0073ea"

    def test_rating_and_number(self):
        assert create_column_settings({"type": "rating", "type_config": {"count": 10}}) == {
            "max_rating": 10
        }
        assert create_column_settings({"type": "number", "type_config": {"precision": 2}}) == {
            "precision": 2
        }

    def test_other_types_empty(self):
        assert create_column_settings({"type": "text"}) == {}
        assert create_column_settings({"type": "drop_down", "type_config": {}}) == {}


class TestMisc:
    def test_generate_field_mappings(self):
        mappings = generate_field_mappings(
            [{"name": "Due (UTC)", "type": "date"}, {"name": "Score", "type": "rating"}]
        )
        assert [(m.monday_column, m.monday_column_type) for m in mappings] == [
            ("Due UTC", "date"),
            ("Score", "rating"),
        ]
        assert mappings[0].transformation_rule is not None

    def test_description_to_update(self):
        description = "See [brief](clickup://task/abc) and ![diagram](https://img/x.png)"
        assert map_description_to_update(description) == (
            "See brief and [Image: diagram](https://img/x.png)"
        )
        assert map_description_to_update(None) == ""

"""
@description 字段映射服务核心逻辑
@responsibility ClickUp 字段类型到 monday 列类型的映射、字段值转换（纯函数，无 I/O）
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from app.utils.helpers import ms_timestamp_to_date

MAX_COLUMN_NAME_LENGTH = 255

PRIORITY_LABELS = {"1": "Urgent", "2": "High", "3": "Normal", "4": "Low"}

DEFAULT_PHONE_COUNTRY = "US"

Transform = Callable[[Any], Any]


class FieldType(str, Enum):
    """ClickUp 自定义字段类型（封闭枚举，未知类型落到 UNKNOWN）"""

    TEXT = "text"
    SHORT_TEXT = "short_text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    CHECKBOX = "checkbox"
    DROP_DOWN = "drop_down"
    LABELS = "labels"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    USERS = "users"
    RATING = "rating"
    LOCATION = "location"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FieldType":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


COLUMN_TYPES: dict[FieldType, str] = {
    FieldType.TEXT: "text",
    FieldType.SHORT_TEXT: "text",
    FieldType.TEXTAREA: "long_text",
    FieldType.NUMBER: "numbers",
    FieldType.CURRENCY: "numbers",
    FieldType.DATE: "date",
    FieldType.CHECKBOX: "checkbox",
    FieldType.DROP_DOWN: "status",
    FieldType.LABELS: "tags",
    FieldType.EMAIL: "email",
    FieldType.PHONE: "phone",
    FieldType.URL: "link",
    FieldType.USERS: "people",
    FieldType.RATING: "rating",
    FieldType.LOCATION: "location",
    FieldType.UNKNOWN: "text",
}


@dataclass(frozen=True)
class FieldMapping:
    """一条 ClickUp 字段 -> monday 列的对应关系"""

    clickup_field: str
    clickup_field_type: str
    monday_column: str
    monday_column_type: str
    transformation_rule: Optional[Transform] = None


# ---------- 各类型的值转换 ----------


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _transform_drop_down(value: Any) -> Optional[dict]:
    if value is None or value == "":
        return None
    option_name = value.get("name") if isinstance(value, dict) else value
    if option_name is None:
        return None
    return {"label": str(option_name)}


def _transform_checkbox(value: Any) -> dict:
    checked = value is True or str(value).lower() in ("true", "1")
    return {"checked": "true" if checked else "false"}


def _transform_date(value: Any) -> Optional[dict]:
    date = ms_timestamp_to_date(value)
    return {"date": date} if date else None


def _transform_users(value: Any) -> Optional[dict]:
    if not value:
        return None
    users = value if isinstance(value, list) else [value]
    return {
        "personsAndTeams": [
            {"id": u["id"] if isinstance(u, dict) else u, "kind": "person"}
            for u in users
        ]
    }


def _transform_labels(value: Any) -> Optional[dict]:
    if not value:
        return None
    labels = value if isinstance(value, list) else [value]
    return {
        "tag_ids": [
            (l.get("id") or l.get("name")) if isinstance(l, dict) else l
            for l in labels
        ]
    }


def _transform_email(value: Any) -> Optional[dict]:
    if not value:
        return None
    return {"email": value, "text": value}


def _transform_phone(value: Any) -> Optional[dict]:
    if not value:
        return None
    return {"phone": value, "countryShortName": DEFAULT_PHONE_COUNTRY}


def _transform_url(value: Any) -> Optional[dict]:
    if not value:
        return None
    return {"url": value, "text": value}


def _transform_rating(value: Any) -> Optional[dict]:
    number = _to_float(value)
    if number is None:
        return None
    return {"rating": int(number)}


def _transform_location(value: Any) -> Optional[dict]:
    if not value:
        return None
    if isinstance(value, str):
        return {"address": value, "lat": None, "lng": None}
    if isinstance(value, dict) and "location" in value:
        # ClickUp 返回 {"location": {"lat", "lng"}, "formatted_address": ...}
        location = value.get("location") or {}
        return {
            "address": value.get("formatted_address", ""),
            "lat": location.get("lat"),
            "lng": location.get("lng"),
        }
    return value


TRANSFORMATIONS: dict[FieldType, Transform] = {
    FieldType.DROP_DOWN: _transform_drop_down,
    FieldType.CHECKBOX: _transform_checkbox,
    FieldType.DATE: _transform_date,
    FieldType.USERS: _transform_users,
    FieldType.LABELS: _transform_labels,
    FieldType.NUMBER: _to_float,
    FieldType.CURRENCY: _to_float,
    FieldType.EMAIL: _transform_email,
    FieldType.PHONE: _transform_phone,
    FieldType.URL: _transform_url,
    FieldType.RATING: _transform_rating,
    FieldType.LOCATION: _transform_location,
}


def map_field_type(clickup_field_type: Optional[str]) -> str:
    """ClickUp 字段类型 -> monday 列类型，未知类型返回 text"""
    return COLUMN_TYPES[FieldType.parse(clickup_field_type)]


def sanitize_column_name(name: str) -> str:
    """移除特殊字符并截断到 255 个字符"""
    cleaned = re.sub(r"[^a-zA-Z0-9 \-_]", "", name or "")
    return cleaned.strip()[:MAX_COLUMN_NAME_LENGTH]


def get_transformation_rule(field_type: Optional[str]) -> Optional[Transform]:
    """获取字段类型对应的值转换函数，文本类字段返回 None（原样写入）"""
    return TRANSFORMATIONS.get(FieldType.parse(field_type))


def generate_field_mappings(fields: list[dict]) -> list[FieldMapping]:
    """根据字段定义生成建议映射（列 ID 暂用清洗后的字段名）"""
    return [
        FieldMapping(
            clickup_field=field["name"],
            clickup_field_type=field.get("type", ""),
            monday_column=sanitize_column_name(field["name"]),
            monday_column_type=map_field_type(field.get("type")),
            transformation_rule=get_transformation_rule(field.get("type")),
        )
        for field in fields
    ]


def create_column_settings(field: dict) -> dict:
    """根据字段定义生成 monday 列的 defaults"""
    field_type = FieldType.parse(field.get("type"))
    type_config = field.get("type_config") or {}

    if field_type == FieldType.DROP_DOWN:
        options = type_config.get("options") or []
        if not options:
            return {}
        labels = {}
        labels_colors = {}
        for index, option in enumerate(options):
            key = str(index)
            color = option.get("color") or "#0073ea"
            labels[key] = option.get("name", "")
            labels_colors[key] = {"color": color, "border": color}
        return {"labels": labels, "labels_colors": labels_colors}

    if field_type == FieldType.RATING:
        return {"max_rating": type_config.get("count") or type_config.get("max") or 5}

    if field_type == FieldType.NUMBER:
        return {"precision": type_config.get("precision") or 0}

    return {}


def _resolve_drop_down_value(field: dict) -> Any:
    """ClickUp 下拉字段的值是选项序号或选项 ID，这里换成选项对象"""
    value = field.get("value")
    options = (field.get("type_config") or {}).get("options") or []
    for option in options:
        if value == option.get("orderindex") or value == option.get("id"):
            return option
    return value


def transform_custom_field_values(
    task: dict, field_mappings: list[FieldMapping]
) -> dict:
    """
    转换任务的自定义字段值为 monday column_values

    按字段名查找映射；没有映射的字段跳过；转换结果为 None 时跳过。
    """
    by_name = {m.clickup_field: m for m in field_mappings}
    column_values: dict[str, Any] = {}

    for field in task.get("custom_fields") or []:
        mapping = by_name.get(field.get("name"))
        if mapping is None:
            continue

        value = field.get("value")
        if FieldType.parse(field.get("type")) == FieldType.DROP_DOWN:
            value = _resolve_drop_down_value(field)

        transform = mapping.transformation_rule or get_transformation_rule(
            field.get("type")
        )
        if value is not None and transform is not None:
            value = transform(value)

        if value is not None:
            column_values[mapping.monday_column] = value

    return column_values


def transform_standard_fields(
    task: dict,
    preserve_assignees: bool = True,
    preserve_dates: bool = True,
) -> tuple[str, dict]:
    """
    转换任务内置字段（状态、截止日期、负责人、优先级、标签）

    Returns:
        (item 名称, column_values)
    """
    column_values: dict[str, Any] = {}

    status = task.get("status")
    if status:
        label = status.get("status") if isinstance(status, dict) else status
        if label:
            column_values["status"] = {"label": label}

    if preserve_dates and task.get("due_date"):
        due_date = ms_timestamp_to_date(task["due_date"])
        if due_date:
            column_values["due_date"] = {"date": due_date}

    assignees = task.get("assignees") or []
    if preserve_assignees and assignees:
        column_values["people"] = {
            "personsAndTeams": [{"id": a["id"], "kind": "person"} for a in assignees]
        }

    priority = task.get("priority")
    if priority:
        priority_id = str(priority.get("id")) if isinstance(priority, dict) else str(priority)
        column_values["priority"] = {"label": PRIORITY_LABELS.get(priority_id, "Normal")}

    tags = task.get("tags") or []
    if tags:
        column_values["tags"] = {"tag_ids": [tag["name"] for tag in tags]}

    return task.get("name", ""), column_values


def map_description_to_update(description: Optional[str]) -> str:
    """把 ClickUp markdown 描述转换为 monday update 文本"""
    if not description:
        return ""

    # 去掉 ClickUp 内部链接，只保留文字
    text = re.sub(r"\[([^\]]+)\]\(clickup://[^)]+\)", r"\1", description)
    text = re.sub(r"!\[([^\]]*)\]\(([^)]+)\)", r"[Image: \1](\2)", text)
    return text.strip()

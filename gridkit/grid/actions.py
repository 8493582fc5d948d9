#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
表格操作与请求参数

操作名是封闭的枚举；每个操作有自己的参数类型，在进入引擎之前
从原始请求映射中解析并校验。
"""

import json
import re
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from gridkit.common.constants import MAX_PER_PAGE, SortDirections
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.exceptions import InvalidActionError, ValidationError

MAX_SEARCH_LENGTH = 255

# 新增/编辑时不作为字段值的请求键
RESERVED_KEYS = ("action", "id", "data", "files")


class GridAction(str, Enum):
    FETCH_DATA = "fetch_data"
    FETCH_RECORD = "fetch_record"
    ADD_RECORD = "add_record"
    EDIT_RECORD = "edit_record"
    DELETE_RECORD = "delete_record"
    BULK_ACTION = "bulk_action"
    INLINE_EDIT = "inline_edit"
    UPLOAD_FILE = "upload_file"
    ACTION_CALLBACK = "action_callback"
    FETCH_AGGREGATIONS = "fetch_aggregations"
    FETCH_SELECT2_OPTIONS = "fetch_select2_options"

    @classmethod
    def parse(cls, name: Any) -> "GridAction":
        """操作名转换为枚举

        Raises:
            InvalidActionError: 不在允许列表中的操作名
        """
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name or "").strip())
        except ValueError:
            raise InvalidActionError(f"无效的操作: {name}")


# ============================================================================
# 请求值清洗
# ============================================================================

def validate_integer(value: Any, default: Optional[int] = None, minimum: Optional[int] = None) -> Optional[int]:
    """解析整数；无法解析或小于 minimum 时返回 default"""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and re.match(r"^\s*-?\d+\s*$", value):
        number = int(value)
    else:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def parse_id(value: Any) -> Optional[int]:
    """正整数 id，其它情况返回 None"""
    return validate_integer(value, None, 1)


def sanitize_search(value: Any) -> str:
    return str(value or "").strip()[:MAX_SEARCH_LENGTH]


def sanitize_sort_direction(value: Any) -> str:
    return SortDirections.DESC if str(value or "").strip().upper() == SortDirections.DESC else SortDirections.ASC


def parse_json_object(value: Any) -> Dict[str, Any]:
    """JSON 对象字符串或字典；无法解析时返回空字典"""
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_id_list(value: Any) -> List[int]:
    """JSON 数组字符串或列表中的正整数 id，去重并保持顺序

    Raises:
        ValidationError: 不是数组，或其中没有任何有效 id
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError("selected_ids 必须是 JSON 数组")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("selected_ids 必须是数组")

    ids: List[int] = []
    for item in value:
        parsed = parse_id(item)
        if parsed is not None and parsed not in ids:
            ids.append(parsed)
    if not ids:
        raise ValidationError("没有选择有效的记录")
    return ids


def _per_page(value: Any) -> Optional[int]:
    if isinstance(value, str) and value.strip().lower() == "all":
        return 0
    per_page = validate_integer(value, None, 0)
    if per_page is not None and per_page > MAX_PER_PAGE:
        return MAX_PER_PAGE
    return per_page


def _record_fields(raw: Mapping[str, Any]) -> Dict[str, Any]:
    data = raw.get("data")
    if isinstance(data, (dict, str)) and data:
        return parse_json_object(data)
    return {k: v for k, v in raw.items() if k not in RESERVED_KEYS}


# ============================================================================
# 各操作的参数
# ============================================================================

@dataclass
class FetchDataParams:
    page: int = 1
    per_page: Optional[int] = None
    search: str = ""
    search_column: Optional[str] = None
    sort_column: Optional[str] = None
    sort_direction: str = SortDirections.ASC

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "FetchDataParams":
        # 排序列不做字符清洗：只有与配置中的可排序列完全一致时才会被使用
        sort_column = str(raw.get("sort_column") or "").strip() or None
        search_column = TableNameResolver.sanitize_column_name(raw.get("search_column")) or None
        return cls(
            page=validate_integer(raw.get("page"), 1, 1),
            per_page=_per_page(raw.get("per_page")),
            search=sanitize_search(raw.get("search")),
            search_column=search_column,
            sort_column=sort_column,
            sort_direction=sanitize_sort_direction(raw.get("sort_direction")),
        )


@dataclass
class FetchRecordParams:
    id: Optional[int] = None

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "FetchRecordParams":
        return cls(id=parse_id(raw.get("id")))


@dataclass
class AddRecordParams:
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)
    files: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "AddRecordParams":
        return cls(data=_record_fields(raw), files=dict(raw.get("files") or {}))


@dataclass
class EditRecordParams:
    id: Optional[int] = None
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)
    files: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "EditRecordParams":
        return cls(id=parse_id(raw.get("id")), data=_record_fields(raw), files=dict(raw.get("files") or {}))


@dataclass
class DeleteRecordParams:
    id: Optional[int] = None

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "DeleteRecordParams":
        return cls(id=parse_id(raw.get("id")))


@dataclass
class BulkActionParams:
    action: str = ""
    selected_ids: List[int] = dataclasses.field(default_factory=list)

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "BulkActionParams":
        action = TableNameResolver.sanitize_input(raw.get("bulk_action"))
        if not action:
            raise ValidationError("缺少批量操作名")
        return cls(action=action, selected_ids=parse_id_list(raw.get("selected_ids")))


@dataclass
class InlineEditParams:
    id: Optional[int] = None
    field: str = ""
    value: Any = None

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "InlineEditParams":
        return cls(
            id=parse_id(raw.get("id")),
            field=TableNameResolver.sanitize_column_name(raw.get("field")),
            value=raw.get("value"),
        )


@dataclass
class UploadFileParams:
    field: str = ""
    upload: Any = None

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "UploadFileParams":
        return cls(field=TableNameResolver.sanitize_column_name(raw.get("field")), upload=raw.get("file"))


@dataclass
class ActionCallbackParams:
    action: str = ""
    row_id: Optional[int] = None
    row_data: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "ActionCallbackParams":
        return cls(
            action=TableNameResolver.sanitize_input(raw.get("action_name")),
            row_id=parse_id(raw.get("row_id")),
            row_data=parse_json_object(raw.get("row_data")),
        )


@dataclass
class FetchLookupOptionsParams:
    field: Optional[str] = None
    query: Optional[str] = None
    search: str = ""
    value_filter: Optional[str] = None
    record_data: Dict[str, Any] = dataclasses.field(default_factory=dict)
    max_results: Optional[int] = None

    @classmethod
    def from_request(cls, raw: Mapping[str, Any]) -> "FetchLookupOptionsParams":
        value_filter = raw.get("value_filter")
        return cls(
            field=TableNameResolver.sanitize_column_name(raw.get("field")) or None,
            query=str(raw.get("query") or "").strip() or None,
            search=sanitize_search(raw.get("search")),
            value_filter=str(value_filter).strip() if value_filter not in (None, "") else None,
            record_data=parse_json_object(raw.get("record_data")),
            max_results=validate_integer(raw.get("max_results"), None, 0),
        )


PARAM_TYPES = {
    GridAction.FETCH_DATA: FetchDataParams,
    GridAction.FETCH_RECORD: FetchRecordParams,
    GridAction.ADD_RECORD: AddRecordParams,
    GridAction.EDIT_RECORD: EditRecordParams,
    GridAction.DELETE_RECORD: DeleteRecordParams,
    GridAction.BULK_ACTION: BulkActionParams,
    GridAction.INLINE_EDIT: InlineEditParams,
    GridAction.UPLOAD_FILE: UploadFileParams,
    GridAction.ACTION_CALLBACK: ActionCallbackParams,
    GridAction.FETCH_AGGREGATIONS: FetchDataParams,
    GridAction.FETCH_SELECT2_OPTIONS: FetchLookupOptionsParams,
}


def parse_request(action: Any, raw: Optional[Mapping[str, Any]] = None):
    """解析操作名与原始请求参数

    Returns:
        (GridAction, 参数对象)

    Raises:
        InvalidActionError: 未知操作
        ValidationError: 参数无效
    """
    grid_action = GridAction.parse(action)
    params = PARAM_TYPES[grid_action].from_request(raw or {})
    return grid_action, params

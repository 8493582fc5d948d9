#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
表格配置模型

声明式描述一个表格：表与别名、列、关联、固定条件、可排序/可行内编辑列、
计算列、表尾聚合、分组、分页、批量操作、行操作以及渲染层使用的表单与样式设置。

配置在绑定到 DataGrid 时冻结，之后只读。
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from gridkit.common.config_manager import get_grid_defaults
from gridkit.common.constants import (
    CALCULATION_OPERATORS,
    Aggregations,
    Comparators,
    JoinTypes,
    SortDirections,
)
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.logging_utils import get_logger
from gridkit.grid.schema import generate_label

logger = get_logger(__name__)

_ALIAS_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

WhereSpec = Union[List[Dict[str, Any]], Dict[str, List[Dict[str, Any]]]]


def _normalize_condition(condition: Dict[str, Any]) -> Dict[str, Any]:
    """校验单个结构化条件并规范比较符"""
    if not isinstance(condition, dict) or not condition.get("field"):
        raise ValueError(f"条件必须包含 field: {condition!r}")

    comparator = str(condition.get("comparator", "=")).strip().upper()
    if comparator not in Comparators.ALLOWED:
        raise ValueError(f"不支持的比较符: {comparator}")

    value = condition.get("value")
    if comparator in Comparators.LIST_COMPARATORS:
        if not isinstance(value, (list, tuple)) or not value:
            raise ValueError(f"{comparator} 条件的值必须是非空列表: {condition['field']}")
        value = list(value)

    return {"field": str(condition["field"]).strip(), "comparator": comparator, "value": value}


class GridConfig:
    """表格配置

    所有设置方法返回自身，支持链式调用：

    ```python
    config = (
        GridConfig()
        .table("streams s")
        .columns({"s.id": "ID", "s.name": "名称", "c.name AS category": "分类"})
        .join("LEFT", "categories c", "c.id = s.category_id")
        .where([{"field": "s.active", "comparator": "=", "value": 1}])
        .sortable(["s.name", "category"])
        .inline_editable(["s.name"])
        .primary_key("s.id")
    )
    ```
    """

    def __init__(self, table: Optional[str] = None):
        self._table_name: Optional[str] = None
        self._base_table: Optional[str] = None
        self._table_alias: Optional[str] = None
        self._columns: Dict[str, str] = {}
        self._column_settings: Dict[str, Dict[str, Any]] = {}
        self._joins: List[Dict[str, str]] = []
        self._where: WhereSpec = []
        self._sortable: List[str] = []
        self._inline_editable: List[str] = []
        self._per_page: int = int(get_grid_defaults("records_per_page", 25))
        self._page_size_options: List[int] = list(
            get_grid_defaults("page_size_options", [25, 50, 100, 250])
        )
        self._include_all_option: bool = bool(get_grid_defaults("include_all_option", True))
        self._search_enabled = True
        self._bulk_actions_enabled = False
        self._bulk_actions: Dict[str, Dict[str, Any]] = {}
        self._action_groups: List[Any] = []
        self._primary_key = "id"
        self._calculated_columns: Dict[str, Dict[str, Any]] = {}
        self._footer_aggregations: Dict[str, Dict[str, Any]] = {}
        self._group_by: Optional[str] = None
        self._default_sort: Optional[Tuple[str, str]] = None
        self._file_upload: Dict[str, Any] = {
            "upload_path": "uploads/",
            "allowed_extensions": ["jpg", "jpeg", "png", "gif", "webp", "pdf"],
            "max_file_size": 10 * 1024 * 1024,
        }
        self._add_form: Dict[str, Any] = {}
        self._edit_form: Dict[str, Any] = {}
        self._css_classes: Dict[str, str] = {}
        self._theme = "plain"
        self._frozen = False

        if table:
            self.table(table)

    # ============================================================================
    # 设置
    # ============================================================================

    def _check_mutable(self):
        if self._frozen:
            raise RuntimeError("表格配置已冻结，不能再修改")

    def freeze(self) -> "GridConfig":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def table(self, table_name: str) -> "GridConfig":
        """设置表，支持 "表名 别名" 或 "表名 AS 别名" 形式"""
        self._check_mutable()
        base, alias = TableNameResolver.split_table_alias(table_name)
        if not TableNameResolver.is_safe_identifier(base):
            raise ValueError(f"非法的表名: {table_name}")
        self._base_table = base
        self._table_alias = alias
        self._table_name = f"{base} {alias}" if alias else base
        return self

    def columns(self, columns: Union[Sequence[str], Dict[str, Any]]) -> "GridConfig":
        """设置显示列

        Args:
            columns: 列名列表（自动生成标签），或 {列: 标签} / {列: 列配置字典}。
                列配置字典可包含 label、type、options、query、min_search_chars、
                max_results、class、attributes、placeholder 等键。
        """
        self._check_mutable()
        self._columns = {}
        self._column_settings = {}
        if isinstance(columns, dict):
            items = columns.items()
        else:
            items = ((column, None) for column in columns)

        for column, setting in items:
            column = str(column).strip()
            if isinstance(setting, dict):
                label = setting.get("label") or generate_label(
                    TableNameResolver.split_column_alias(column)[1] or TableNameResolver.unqualify(column)
                )
                self._column_settings[column] = {k: v for k, v in setting.items() if k != "label"}
            elif setting:
                label = str(setting)
            else:
                label = generate_label(
                    TableNameResolver.split_column_alias(column)[1] or TableNameResolver.unqualify(column)
                )
            self._columns[column] = label

        # 重新挂上已声明的计算列
        for alias, calc in self._calculated_columns.items():
            self._columns[f"{calc['expression']} AS {alias}"] = calc["label"]
        return self

    def join(self, join_type: str, table: str, condition: str) -> "GridConfig":
        """添加关联；条件由调用方编写，原样拼入 SQL"""
        self._check_mutable()
        join_type = str(join_type).strip().upper()
        if join_type not in JoinTypes.ALLOWED:
            raise ValueError(f"不支持的关联类型: {join_type}")
        self._joins.append({"type": join_type, "table": table.strip(), "condition": condition.strip()})
        return self

    def where(self, conditions: WhereSpec) -> "GridConfig":
        """设置固定条件

        Args:
            conditions: [{field, comparator, value}, ...]（全部 AND），
                或 {"AND": [...], "OR": [...]} 分组形式
        """
        self._check_mutable()
        if isinstance(conditions, dict):
            groups = {}
            for group_type, items in conditions.items():
                group_type = str(group_type).upper()
                if group_type not in ("AND", "OR"):
                    raise ValueError(f"条件分组只能是 AND 或 OR: {group_type}")
                groups[group_type] = [_normalize_condition(c) for c in items]
            self._where = groups
        else:
            self._where = [_normalize_condition(c) for c in (conditions or [])]
        return self

    def sortable(self, columns: Sequence[str]) -> "GridConfig":
        self._check_mutable()
        self._sortable = [str(c).strip() for c in columns if str(c).strip()]
        return self

    def inline_editable(self, columns: Sequence[str]) -> "GridConfig":
        self._check_mutable()
        cleaned = [TableNameResolver.sanitize_column_name(c) for c in columns]
        self._inline_editable = [c for c in cleaned if c]
        return self

    def per_page(self, per_page: int) -> "GridConfig":
        """每页记录数，0 表示不分页"""
        self._check_mutable()
        per_page = int(per_page)
        if per_page < 0:
            raise ValueError("每页记录数不能为负数")
        self._per_page = per_page
        return self

    def page_size_options(self, options: Sequence[int], include_all: bool = True) -> "GridConfig":
        self._check_mutable()
        self._page_size_options = [int(o) for o in options if int(o) > 0]
        self._include_all_option = include_all
        return self

    def search(self, enabled: bool = True) -> "GridConfig":
        self._check_mutable()
        self._search_enabled = bool(enabled)
        return self

    def bulk_actions(self, enabled: bool = True, actions: Optional[Dict[str, Dict[str, Any]]] = None) -> "GridConfig":
        """批量操作；未提供时只有内置的 delete"""
        self._check_mutable()
        self._bulk_actions_enabled = bool(enabled)
        if actions is None:
            actions = {
                "delete": {
                    "label": "删除所选",
                    "confirm": "确定删除所选记录吗？",
                    "success_message": "所选记录已删除",
                    "error_message": "删除所选记录失败",
                }
            }
        self._bulk_actions = {str(name): dict(action or {}) for name, action in actions.items()}
        return self

    def action_groups(self, groups: Sequence[Any]) -> "GridConfig":
        """行操作分组

        每个分组可以是内置操作名（"edit"、"delete"），
        也可以是 {操作名: {icon, title, class, href, onclick, attributes, callback,
        success_message, error_message, confirm}} 字典。
        """
        self._check_mutable()
        self._action_groups = list(groups)
        return self

    def primary_key(self, column: str) -> "GridConfig":
        self._check_mutable()
        column = TableNameResolver.sanitize_column_name(column)
        if not column:
            raise ValueError("主键列名不能为空")
        self._primary_key = column
        return self

    def calculated_column(
        self, alias: str, label: str, columns: Sequence[str], operator: str = "+"
    ) -> "GridConfig":
        """由两个以上列通过同一运算符组合的计算列"""
        self._check_mutable()
        if len(columns) < 2:
            raise ValueError("计算列至少需要两个列")
        if operator not in CALCULATION_OPERATORS:
            raise ValueError(f"不支持的运算符: {operator}")
        for column in columns:
            if not TableNameResolver.is_safe_identifier(column):
                raise ValueError(f"非法的列名: {column}")
        expression = "(" + f" {operator} ".join(columns) + ")"
        return self._add_calculated(alias, label, expression, list(columns), operator)

    def calculated_column_raw(self, alias: str, label: str, expression: str) -> "GridConfig":
        """任意 SQL 表达式的计算列，表达式由调用方编写"""
        self._check_mutable()
        return self._add_calculated(alias, label, f"({expression.strip()})", [], None)

    def _add_calculated(self, alias, label, expression, columns, operator) -> "GridConfig":
        if not _ALIAS_RE.match(alias or ""):
            raise ValueError(f"非法的计算列别名: {alias}")
        stale = [k for k in self._columns if TableNameResolver.split_column_alias(k)[1] == alias]
        for key in stale:
            del self._columns[key]
        self._calculated_columns[alias] = {
            "label": label,
            "expression": expression,
            "columns": columns,
            "operator": operator,
        }
        self._columns[f"{expression} AS {alias}"] = label
        return self

    def footer_aggregate(
        self,
        column: str,
        aggregate_type: str = Aggregations.SUM,
        scope: str = Aggregations.SCOPE_ALL,
        label: Optional[str] = None,
    ) -> "GridConfig":
        self._check_mutable()
        aggregate_type = aggregate_type.lower()
        scope = scope.lower()
        if aggregate_type not in Aggregations.TYPES:
            raise ValueError(f"不支持的聚合类型: {aggregate_type}")
        if scope not in Aggregations.SCOPES:
            raise ValueError(f"不支持的聚合范围: {scope}")
        column = column.strip()
        if column not in self._calculated_columns and not TableNameResolver.is_safe_identifier(column):
            raise ValueError(f"非法的聚合列: {column}")
        self._footer_aggregations[column] = {"type": aggregate_type, "scope": scope, "label": label}
        return self

    def group_by(self, expression: Optional[str]) -> "GridConfig":
        self._check_mutable()
        self._group_by = expression.strip() if expression else None
        return self

    def default_sort(self, column: str, direction: str = SortDirections.ASC) -> "GridConfig":
        self._check_mutable()
        direction = SortDirections.DESC if str(direction).upper() == SortDirections.DESC else SortDirections.ASC
        self._default_sort = (column.strip(), direction)
        return self

    def file_upload(
        self,
        upload_path: str = "uploads/",
        allowed_extensions: Optional[Sequence[str]] = None,
        max_file_size: int = 10 * 1024 * 1024,
    ) -> "GridConfig":
        self._check_mutable()
        self._file_upload = {
            "upload_path": upload_path,
            "allowed_extensions": [e.lower().lstrip(".") for e in (allowed_extensions or self._file_upload["allowed_extensions"])],
            "max_file_size": int(max_file_size),
        }
        return self

    def add_form(self, title: str, fields: Optional[Sequence[str]] = None, **options) -> "GridConfig":
        self._check_mutable()
        self._add_form = {"title": title, "fields": list(fields or []), **options}
        return self

    def edit_form(self, title: str, fields: Optional[Sequence[str]] = None, **options) -> "GridConfig":
        self._check_mutable()
        self._edit_form = {"title": title, "fields": list(fields or []), **options}
        return self

    def css_classes(self, classes: Dict[str, str]) -> "GridConfig":
        self._check_mutable()
        self._css_classes.update(classes)
        return self

    def theme(self, name: str) -> "GridConfig":
        self._check_mutable()
        self._theme = name
        return self

    # ============================================================================
    # 读取
    # ============================================================================

    @property
    def table_name(self) -> Optional[str]:
        """读查询使用的表引用（可能带别名）"""
        return self._table_name

    @property
    def base_table(self) -> Optional[str]:
        """写操作使用的不带别名的表名"""
        return self._base_table

    @property
    def table_alias(self) -> Optional[str]:
        return self._table_alias

    def get_columns(self) -> Dict[str, str]:
        return dict(self._columns)

    def get_column_settings(self, column: Optional[str] = None) -> Dict[str, Any]:
        if column is None:
            return {k: dict(v) for k, v in self._column_settings.items()}
        return dict(self._column_settings.get(column, {}))

    def get_joins(self) -> List[Dict[str, str]]:
        return [dict(j) for j in self._joins]

    def get_where(self) -> WhereSpec:
        if isinstance(self._where, dict):
            return {k: [dict(c) for c in v] for k, v in self._where.items()}
        return [dict(c) for c in self._where]

    def get_sortable(self) -> List[str]:
        return list(self._sortable)

    def get_inline_editable(self) -> List[str]:
        return list(self._inline_editable)

    def get_per_page(self) -> int:
        return self._per_page

    def get_page_size_options(self) -> List[int]:
        return list(self._page_size_options)

    def include_all_option(self) -> bool:
        return self._include_all_option

    def search_enabled(self) -> bool:
        return self._search_enabled

    def bulk_actions_enabled(self) -> bool:
        return self._bulk_actions_enabled

    def get_bulk_actions(self) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self._bulk_actions.items()}

    def get_action_groups(self) -> List[Any]:
        return list(self._action_groups)

    def get_row_actions(self) -> Dict[str, Dict[str, Any]]:
        """所有分组中以字典声明的行操作，按操作名展开"""
        actions = {}
        for group in self._action_groups:
            if isinstance(group, dict):
                for name, action in group.items():
                    if isinstance(action, dict):
                        actions[str(name)] = dict(action)
        return actions

    def get_primary_key(self) -> str:
        return self._primary_key

    def get_calculated_columns(self) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self._calculated_columns.items()}

    def get_footer_aggregations(self) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self._footer_aggregations.items()}

    def get_group_by(self) -> Optional[str]:
        return self._group_by

    def get_default_sort(self) -> Optional[Tuple[str, str]]:
        return self._default_sort

    def get_file_upload(self) -> Dict[str, Any]:
        return dict(self._file_upload)

    def get_add_form(self) -> Dict[str, Any]:
        return dict(self._add_form)

    def get_edit_form(self) -> Dict[str, Any]:
        return dict(self._edit_form)

    def get_css_classes(self) -> Dict[str, str]:
        return dict(self._css_classes)

    def get_theme(self) -> str:
        return self._theme

    # ============================================================================
    # 声明式构建
    # ============================================================================

    @classmethod
    def from_dict(cls, definition: Dict[str, Any]) -> "GridConfig":
        """从字典（通常来自 YAML 表格定义）构建配置

        键与设置方法同名；joins 为 [{type, table, condition}]，
        calculated_columns 为 [{alias, label, columns, operator} 或 {alias, label, expression}]，
        footer_aggregations 为 {列: {type, scope, label}}，default_sort 为 {column, direction}。
        """
        if not definition.get("table"):
            raise ValueError("表格定义必须包含 table")

        config = cls(definition["table"])
        for join in definition.get("joins", []):
            config.join(join.get("type", JoinTypes.INNER), join["table"], join["condition"])
        if "where" in definition:
            config.where(definition["where"])
        if "columns" in definition:
            config.columns(definition["columns"])
        for calc in definition.get("calculated_columns", []):
            if "expression" in calc:
                config.calculated_column_raw(calc["alias"], calc.get("label", calc["alias"]), calc["expression"])
            else:
                config.calculated_column(
                    calc["alias"], calc.get("label", calc["alias"]), calc["columns"], calc.get("operator", "+")
                )
        for column, agg in (definition.get("footer_aggregations") or {}).items():
            agg = agg or {}
            config.footer_aggregate(
                column,
                agg.get("type", Aggregations.SUM),
                agg.get("scope", Aggregations.SCOPE_ALL),
                agg.get("label"),
            )

        simple_setters = {
            "sortable": config.sortable,
            "inline_editable": config.inline_editable,
            "per_page": config.per_page,
            "search": config.search,
            "action_groups": config.action_groups,
            "primary_key": config.primary_key,
            "group_by": config.group_by,
            "css_classes": config.css_classes,
            "theme": config.theme,
        }
        for key, setter in simple_setters.items():
            if key in definition:
                setter(definition[key])

        if "page_size_options" in definition:
            config.page_size_options(
                definition["page_size_options"], definition.get("include_all_option", True)
            )
        if "bulk_actions" in definition:
            bulk = definition["bulk_actions"] or {}
            config.bulk_actions(bulk.get("enabled", True), bulk.get("actions"))
        if "default_sort" in definition:
            sort = definition["default_sort"]
            if isinstance(sort, dict):
                config.default_sort(sort["column"], sort.get("direction", SortDirections.ASC))
            else:
                config.default_sort(*sort)
        if "file_upload" in definition:
            config.file_upload(**definition["file_upload"])
        for form_key, setter in (("add_form", config.add_form), ("edit_form", config.edit_form)):
            if form_key in definition:
                form = dict(definition[form_key])
                setter(form.pop("title", ""), form.pop("fields", None), **form)

        logger.debug(f"已从定义构建表格配置: {config.table_name}")
        return config

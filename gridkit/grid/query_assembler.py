#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
查询组装

根据表格配置和请求参数（搜索、排序、分页）组装数据查询、计数查询、
聚合查询和 select2 标签查询。所有来自请求的标识符都先与配置中的
允许列表比对，只有配置中的写法才会进入 SQL 文本。
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from gridkit.common.constants import Aggregations, Comparators, SortDirections
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.logging_utils import get_logger
from gridkit.grid.config import GridConfig
from gridkit.grid.query_builder import Condition, ConditionGroup, QueryBuilder

logger = get_logger(__name__)

_TEMPLATE_FIELD_RE = re.compile(r"\{([^}]+)\}")
_LOOKUP_LABEL_RE = re.compile(r",\s*([a-zA-Z0-9_\.]+)\s+AS\s+[`'\"]*Label[`'\"]*", re.IGNORECASE)
_LOOKUP_ID_RE = re.compile(
    r"SELECT\s+(?:DISTINCT\s+)?([a-zA-Z0-9_\.]+)\s+AS\s+[`'\"]*ID[`'\"]*(?=[\s,])", re.IGNORECASE
)
_TRAILING_ORDER_RE = re.compile(r"\s+ORDER\s+BY\s+[^()]*$", re.IGNORECASE)

Query = Tuple[str, List[Any]]


# ============================================================================
# 结构化条件
# ============================================================================

def render_condition(condition: Dict[str, Any], resolver: TableNameResolver, strip_alias: bool = False) -> Condition:
    """把 {field, comparator, value} 渲染为条件片段

    strip_alias=True 时去掉表前缀，用于针对不带别名的基础表的写操作。
    """
    field = condition["field"]
    if strip_alias:
        field_sql = resolver.quote(TableNameResolver.unqualify(field))
    else:
        field_sql = resolver.column_sql(field)

    comparator = condition["comparator"]
    value = condition.get("value")

    if comparator in Comparators.LIST_COMPARATORS:
        values = list(value)
        return Condition(f"{field_sql} {comparator} ({', '.join(['?'] * len(values))})", values)
    if value is None and comparator == "=":
        return Condition(f"{field_sql} IS NULL")
    if value is None and comparator in ("!=", "<>"):
        return Condition(f"{field_sql} IS NOT NULL")
    return Condition(f"{field_sql} {comparator} ?", [value])


def render_conditions(where, resolver: TableNameResolver, strip_alias: bool = False) -> ConditionGroup:
    """渲染表格配置中的固定条件

    列表形式全部以 AND 连接；分组形式 {"AND": [...], "OR": [...]} 中
    每组按组名连接，组与组之间以 AND 连接。
    """
    root = ConditionGroup("AND")
    if isinstance(where, dict):
        for group_type, conditions in where.items():
            group = ConditionGroup(group_type)
            for condition in conditions:
                group.add(render_condition(condition, resolver, strip_alias))
            root.add(group)
    else:
        for condition in where or []:
            root.add(render_condition(condition, resolver, strip_alias))
    return root


# ============================================================================
# select2 查询辅助
# ============================================================================

def parse_lookup_columns(query: str) -> Tuple[str, Optional[str]]:
    """从 "SELECT x AS ID, y AS Label FROM ..." 中取出 ID 列与 Label 列的原始表达式"""
    id_match = _LOOKUP_ID_RE.search(query)
    label_match = _LOOKUP_LABEL_RE.search(query)
    return (
        id_match.group(1) if id_match else "ID",
        label_match.group(1) if label_match else None,
    )


def append_conditions(query: str, conditions: Sequence[str], limit: Optional[int] = None) -> str:
    """在已有查询末尾追加条件（已有 WHERE 时以 AND 连接），保留末尾的 ORDER BY"""
    query = query.strip().rstrip(";")
    tail = ""
    match = _TRAILING_ORDER_RE.search(query)
    if match:
        query, tail = query[: match.start()], query[match.start():]

    if conditions:
        joined = " AND ".join(conditions)
        if re.search(r"\bWHERE\b", query, re.IGNORECASE):
            query += f" AND ({joined})"
        else:
            query += f" WHERE {joined}"

    query += tail
    if limit:
        query += f" LIMIT {int(limit)}"
    return query


class QueryAssembler:
    """查询组装器

    职责：
    ----
    1. 计算 SELECT 字段：配置列（普通列输出为 col AS `col`，带别名的表达式原样输出），
       行操作模板中引用但未选择的字段，以及主键
    2. 组装 FROM/JOIN/WHERE/搜索，数据、计数、聚合查询共用
    3. 排序列只接受可排序允许列表中的列或其别名，方向只接受 ASC/DESC
    4. 分页：per_page 为 0 时不加 LIMIT
    5. 聚合：按配置生成 SUM/AVG；有 GROUP BY 时先按组取代表值再求和

    无效的排序列与搜索列不会报错，只记录警告并忽略。
    """

    def __init__(self, config: GridConfig, resolver: TableNameResolver):
        self.config = config
        self.resolver = resolver

    # ------------------------------------------------------------------
    # 列解析
    # ------------------------------------------------------------------

    def result_key(self, column: str) -> str:
        """配置列在结果行中的键：别名或列本身"""
        return TableNameResolver.split_column_alias(column)[1] or column

    def match_column(self, name: str) -> Optional[str]:
        """把请求中的列名匹配到配置列（完整写法、别名或不带前缀的列名）"""
        if not name:
            return None
        columns = self.config.get_columns()
        if name in columns:
            return name
        for column in columns:
            expression, alias = TableNameResolver.split_column_alias(column)
            if alias and alias == name.strip("`'\" "):
                return column
        for column in columns:
            expression, alias = TableNameResolver.split_column_alias(column)
            if not alias and TableNameResolver.unqualify(column) == name:
                return column
        return None

    def column_expression(self, column: str) -> str:
        """配置列在 WHERE/聚合中使用的表达式（AS 之前的部分）"""
        expression, alias = TableNameResolver.split_column_alias(column)
        if alias:
            return expression
        return self.resolver.column_sql(column)

    def template_fields(self) -> List[str]:
        """行操作 href/onclick/title/attributes 中引用的 {field}"""
        fields = []
        for group in self.config.get_action_groups():
            if not isinstance(group, dict):
                continue
            for action in group.values():
                if not isinstance(action, dict):
                    continue
                texts = [action.get(prop) for prop in ("href", "onclick", "title")]
                texts.extend((action.get("attributes") or {}).values())
                for text in texts:
                    if isinstance(text, str):
                        fields.extend(m.strip() for m in _TEMPLATE_FIELD_RE.findall(text))
        return fields

    def select_fields(self) -> List[str]:
        columns = self.config.get_columns()
        if not columns:
            return ["*"]

        fields: List[str] = []
        selected_keys = set()
        for column in columns:
            expression, alias = TableNameResolver.split_column_alias(column)
            if alias:
                fields.append(column)
                selected_keys.add(alias)
            else:
                fields.append(f"{self.resolver.column_sql(column)} AS {self.resolver.quote(column)}")
                selected_keys.add(column)

        primary_key = self.config.get_primary_key()
        pk_key = TableNameResolver.unqualify(primary_key)
        if primary_key not in selected_keys and pk_key not in selected_keys:
            fields.append(f"{self.resolver.column_sql(primary_key)} AS {self.resolver.quote(pk_key)}")
            selected_keys.add(pk_key)

        for name in self.template_fields():
            if name == "id" or name in selected_keys:
                continue
            if not TableNameResolver.is_safe_identifier(name):
                logger.warning(f"忽略操作模板中的非法字段: {name}")
                continue
            fields.append(self.resolver.column_sql(name))
            selected_keys.add(name)
        return fields

    # ------------------------------------------------------------------
    # FROM/JOIN/WHERE/搜索
    # ------------------------------------------------------------------

    def search_group(self, search: Optional[str], search_column: Optional[str] = None) -> Optional[ConditionGroup]:
        """搜索条件：指定列时只搜该列，否则在所有配置列之间 OR"""
        if not search or not self.config.search_enabled():
            return None
        term = f"%{search}%"

        if search_column and search_column != "all":
            column = self.match_column(search_column)
            if column is None:
                logger.warning(f"忽略未配置的搜索列: {search_column}")
                return None
            return ConditionGroup("OR", [Condition(f"{self.resolver.text_sql(self.column_expression(column))} LIKE ?", [term])])

        group = ConditionGroup("OR")
        for column in self.config.get_columns():
            group.add(Condition(f"{self.resolver.text_sql(self.column_expression(column))} LIKE ?", [term]))
        return group

    def base_builder(self, search: Optional[str] = None, search_column: Optional[str] = None) -> QueryBuilder:
        builder = QueryBuilder(self.resolver.table_sql(self.config.table_name), self.select_fields())
        for join in self.config.get_joins():
            builder.add_join(join["type"], join["table"], join["condition"])
        builder.add_group(render_conditions(self.config.get_where(), self.resolver))
        builder.add_group(self.search_group(search, search_column))
        group_by = self.config.get_group_by()
        if group_by:
            builder.group_by(group_by if "." in group_by or "(" in group_by or "," in group_by
                             else self.resolver.quote(group_by))
        return builder

    # ------------------------------------------------------------------
    # 排序与分页
    # ------------------------------------------------------------------

    def _order_sql(self, column: str) -> str:
        expression, alias = TableNameResolver.split_column_alias(column)
        if alias:
            return self.resolver.quote(alias)
        return self.resolver.column_sql(column)

    def resolve_sort(self, sort_column: Optional[str], sort_direction: Optional[str] = None) -> Optional[Tuple[str, str]]:
        """解析排序

        Returns:
            (ORDER BY 表达式, 方向)；没有有效排序列且没有默认排序时为 None
        """
        direction = SortDirections.DESC if str(sort_direction or "").upper() == SortDirections.DESC else SortDirections.ASC

        if sort_column:
            sortable = self.config.get_sortable()
            column = self.match_column(sort_column)
            accepted = None
            if sort_column in sortable:
                accepted = sort_column
            elif column is not None and column in sortable:
                accepted = column
            else:
                expression, alias = TableNameResolver.split_column_alias(column or sort_column)
                if alias and alias in sortable:
                    accepted = column or sort_column
                elif column is not None and TableNameResolver.unqualify(column) in sortable:
                    accepted = column
            if accepted is not None:
                return self._order_sql(accepted), direction
            logger.warning(f"忽略不可排序的列: {sort_column}")

        default = self.config.get_default_sort()
        if default:
            return self._order_sql(default[0]), default[1]
        return None

    @staticmethod
    def normalize_paging(page: Optional[int], per_page: Optional[int], default_per_page: int) -> Tuple[int, int]:
        page = page if page and page > 0 else 1
        if per_page is None or per_page < 0:
            per_page = default_per_page
        return page, per_page

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def data_query(
        self,
        search: Optional[str] = None,
        search_column: Optional[str] = None,
        sort_column: Optional[str] = None,
        sort_direction: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Query:
        page, per_page = self.normalize_paging(page, per_page, self.config.get_per_page())
        builder = self.base_builder(search, search_column)
        sort = self.resolve_sort(sort_column, sort_direction)
        if sort:
            builder.add_order_by(*sort)
        if per_page > 0:
            builder.limit(per_page).offset((page - 1) * per_page)
        return builder.build()

    def count_query(self, search: Optional[str] = None, search_column: Optional[str] = None) -> Query:
        return self.base_builder(search, search_column).count()

    def _aggregate_targets(self, scope: str) -> List[Tuple[str, Dict[str, Any]]]:
        targets = []
        for column, agg in self.config.get_footer_aggregations().items():
            if agg["scope"] == scope or agg["scope"] == Aggregations.SCOPE_BOTH:
                targets.append((column, agg))
        return targets

    def _aggregate_select(self, name: str, value_sql: str, aggregate_type: str) -> List[str]:
        parts = []
        if aggregate_type in (Aggregations.SUM, Aggregations.BOTH):
            parts.append(f"SUM({value_sql}) AS {self.resolver.quote(name + '_sum')}")
        if aggregate_type in (Aggregations.AVG, Aggregations.BOTH):
            parts.append(f"AVG({value_sql}) AS {self.resolver.quote(name + '_avg')}")
        return parts

    def _aggregate_expression(self, column: str) -> str:
        calculated = self.config.get_calculated_columns()
        if column in calculated:
            return calculated[column]["expression"]
        configured = self.match_column(column)
        return self.resolver.column_sql(configured if configured and "." in configured else column)

    @staticmethod
    def aggregate_name(column: str) -> str:
        return TableNameResolver.unqualify(column)

    def aggregation_query(self, search: Optional[str] = None, search_column: Optional[str] = None) -> Optional[Query]:
        """全部过滤结果上的聚合

        有 GROUP BY 时每组先取一个代表值（MAX），再在外层求 SUM/AVG，
        关联查询造成的重复行不会被重复计入。
        """
        targets = self._aggregate_targets(Aggregations.SCOPE_ALL)
        if not targets:
            return None

        builder = self.base_builder(search, search_column)
        from_sql, params = builder.from_clause()

        if not builder.group_by_expression:
            select = []
            for column, agg in targets:
                select.extend(self._aggregate_select(self.aggregate_name(column), self._aggregate_expression(column), agg["type"]))
            return f"SELECT {', '.join(select)} {from_sql}", params

        inner_select, outer_select = [], []
        for column, agg in targets:
            name = self.aggregate_name(column)
            inner_select.append(f"MAX({self._aggregate_expression(column)}) AS {self.resolver.quote(name)}")
            outer_select.extend(self._aggregate_select(name, self.resolver.quote(name), agg["type"]))
        inner = f"SELECT {', '.join(inner_select)} {from_sql} GROUP BY {builder.group_by_expression}"
        return f"SELECT {', '.join(outer_select)} FROM ({inner}) AS grouped_data", params

    def page_aggregation_query(
        self,
        search: Optional[str] = None,
        search_column: Optional[str] = None,
        sort_column: Optional[str] = None,
        sort_direction: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Optional[Query]:
        """当前页记录上的聚合，在分页后的数据查询外层求 SUM/AVG"""
        select = []
        for column, agg in self._aggregate_targets(Aggregations.SCOPE_PAGE):
            configured = self.match_column(column)
            if configured is None:
                logger.warning(f"页内聚合列 {column} 不在显示列中，已跳过")
                continue
            key = self.result_key(configured)
            select.extend(self._aggregate_select(self.aggregate_name(column), self.resolver.quote(key), agg["type"]))
        if not select:
            return None
        data_sql, params = self.data_query(search, search_column, sort_column, sort_direction, page, per_page)
        return f"SELECT {', '.join(select)} FROM ({data_sql}) AS page_data", params

    def lookup_label_query(self, lookup_query: str, ids: Sequence[Any]) -> Optional[Query]:
        """按 ID 批量取 select2 标签；查询中找不到 Label 列时返回 None"""
        id_column, label_column = parse_lookup_columns(lookup_query)
        if label_column is None or not ids:
            return None
        condition = f"{id_column} IN ({', '.join(['?'] * len(ids))})"
        return append_conditions(lookup_query, [condition]), list(ids)

#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
SQL查询构建器

以结构化节点保存 SELECT 语句的各个子句，最后统一生成 SQL 与位置参数。
条件中的值一律通过 ? 占位符传入，由 DBManager 按驱动转换。
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

from gridkit.common.constants import JoinTypes, SortDirections


@dataclass
class Condition:
    """单个条件片段，sql 中的 ? 与 params 一一对应"""

    sql: str
    params: List[Any] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.sql

    def render(self) -> Tuple[str, List[Any]]:
        return self.sql, list(self.params)


@dataclass
class ConditionGroup:
    """以 AND / OR 连接的一组条件，可以嵌套"""

    operator: str = "AND"
    items: List[Union[Condition, "ConditionGroup"]] = field(default_factory=list)

    def add(self, item: Union[Condition, "ConditionGroup", None]) -> "ConditionGroup":
        if item is not None and not item.is_empty():
            self.items.append(item)
        return self

    def is_empty(self) -> bool:
        return not any(not item.is_empty() for item in self.items)

    def render(self) -> Tuple[str, List[Any]]:
        parts, params = [], []
        for item in self.items:
            sql, item_params = item.render()
            if sql:
                parts.append(sql)
                params.extend(item_params)
        if not parts:
            return "", []
        if len(parts) == 1:
            return parts[0], params
        return "(" + f" {self.operator} ".join(parts) + ")", params


@dataclass
class Join:
    join_type: str
    table: str
    condition: str

    def render(self) -> str:
        return f"{self.join_type} JOIN {self.table} ON {self.condition}"


class QueryBuilder:
    """SQL查询构建器

    数据查询、计数查询和聚合查询共用同一份 FROM/JOIN/WHERE，
    保证三者接受完全相同的过滤条件。

    示例:
    ```python
    builder = QueryBuilder("`users`", ["`id` AS `id`", "`name` AS `name`"])
    builder.add_condition("`active` = ?", [1]).add_order_by("`name`").limit(25).offset(50)
    sql, params = builder.build()
    # SELECT `id` AS `id`, `name` AS `name` FROM `users` WHERE `active` = ? ORDER BY `name` ASC LIMIT 25 OFFSET 50
    ```
    """

    def __init__(self, table_sql: str, select_columns: Optional[List[str]] = None):
        """初始化查询构建器

        Args:
            table_sql: 已按方言处理好的表引用
            select_columns: 查询列，默认为 '*'
        """
        self.table_sql = table_sql
        self.select_columns = list(select_columns or ["*"])
        self.joins: List[Join] = []
        self.where_group = ConditionGroup("AND")
        self.group_by_expression: Optional[str] = None
        self.order_clauses: List[Tuple[str, str]] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None

    def select(self, columns: List[str]) -> "QueryBuilder":
        self.select_columns = list(columns)
        return self

    def add_join(self, join_type: str, table: str, condition: str) -> "QueryBuilder":
        join_type = join_type.upper()
        if join_type not in JoinTypes.ALLOWED:
            raise ValueError(f"不支持的关联类型: {join_type}")
        self.joins.append(Join(join_type, table, condition))
        return self

    def add_condition(self, sql: str, params: Optional[List[Any]] = None) -> "QueryBuilder":
        """添加以 AND 连接的条件片段"""
        self.where_group.add(Condition(sql, list(params or [])))
        return self

    def add_group(self, group: Optional[ConditionGroup]) -> "QueryBuilder":
        """添加一组条件（组内按自身运算符连接，与其它条件以 AND 连接）"""
        self.where_group.add(group)
        return self

    def group_by(self, expression: Optional[str]) -> "QueryBuilder":
        self.group_by_expression = expression
        return self

    def add_order_by(self, column: str, direction: str = SortDirections.ASC) -> "QueryBuilder":
        direction = SortDirections.DESC if str(direction).upper() == SortDirections.DESC else SortDirections.ASC
        self.order_clauses.append((column, direction))
        return self

    def limit(self, limit: Optional[int]) -> "QueryBuilder":
        self.limit_value = limit
        return self

    def offset(self, offset: Optional[int]) -> "QueryBuilder":
        self.offset_value = offset
        return self

    def from_clause(self) -> Tuple[str, List[Any]]:
        """FROM + JOIN + WHERE 部分，数据/计数/聚合查询共用"""
        sql = f"FROM {self.table_sql}"
        for join in self.joins:
            sql += f" {join.render()}"
        where_sql, params = self.where_group.render()
        if where_sql:
            sql += f" WHERE {where_sql}"
        return sql, params

    def build(self) -> Tuple[str, List[Any]]:
        """构建数据查询

        Returns:
            Tuple[str, List[Any]]: (SQL, 位置参数)
        """
        from_sql, params = self.from_clause()
        sql = f"SELECT {', '.join(self.select_columns)} {from_sql}"

        if self.group_by_expression:
            sql += f" GROUP BY {self.group_by_expression}"

        if self.order_clauses:
            sql += " ORDER BY " + ", ".join(f"{c} {d}" for c, d in self.order_clauses)

        if self.limit_value is not None:
            sql += f" LIMIT {int(self.limit_value)}"
            if self.offset_value:
                sql += f" OFFSET {int(self.offset_value)}"

        return sql, params

    def count(self) -> Tuple[str, List[Any]]:
        """构建计数查询

        有 GROUP BY 时统计分组数：
        SELECT COUNT(*) AS total FROM (SELECT 1 AS grouped_row FROM ... GROUP BY g) AS grouped
        """
        from_sql, params = self.from_clause()
        if self.group_by_expression:
            inner = f"SELECT 1 AS grouped_row {from_sql} GROUP BY {self.group_by_expression}"
            return f"SELECT COUNT(*) AS total FROM ({inner}) AS grouped", params
        return f"SELECT COUNT(*) AS total {from_sql}", params

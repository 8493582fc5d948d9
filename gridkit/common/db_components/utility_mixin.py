"""
数据库实用工具Mixin

该模块提供计数、存在性检查、单行读取、原始语句与 DataFrame 读取等便捷接口。
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from gridkit.common.constants import Drivers

_READ_KEYWORDS = ("SELECT", "WITH", "PRAGMA", "SHOW", "DESCRIBE", "EXPLAIN")


class UtilityMixin:
    """数据库实用工具Mixin

    职责：
    ----
    1. 常用查询模式的封装（count/exists/first）
    2. 原始语句执行与字符串字面量转义
    3. 连接状态测试
    4. 以 pandas.DataFrame 形式读取查询结果

    条件片段（where）以 ? 占位符书写，参数单独传入。
    """

    def count(
        self,
        table: str,
        column: str = "*",
        where: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> int:
        target = column if column == "*" else self.resolver.column_sql(column)  # type: ignore
        sql = f"SELECT COUNT({target}) AS cnt FROM {self.resolver.table_sql(table)}"  # type: ignore
        if where:
            sql += f" WHERE {where}"
        row = self.query(sql).bind(list(params or [])).as_array().single().fetch()  # type: ignore
        return int(row["cnt"]) if row else 0

    def exists(self, table: str, where: str, params: Optional[Sequence[Any]] = None) -> bool:
        sql = f"SELECT 1 AS found FROM {self.resolver.table_sql(table)} WHERE {where} LIMIT 1"  # type: ignore
        row = self.query(sql).bind(list(params or [])).single().fetch()  # type: ignore
        return bool(row)

    def first(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
        order_by: Optional[str] = None,
    ):
        """读取满足条件的第一行，没有时返回 None"""
        sql = f"SELECT * FROM {self.resolver.table_sql(table)}"  # type: ignore
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        sql += " LIMIT 1"
        row = self.query(sql).bind(list(params or [])).single().fetch()  # type: ignore
        return row or None

    def raw(self, sql: str, params: Union[Sequence[Any], Dict[str, Any], None] = None):
        """执行原始语句：读语句返回行列表，写语句返回 execute 的结果"""
        self.query(sql)  # type: ignore
        if params:
            self.bind(params)  # type: ignore
        keyword = sql.lstrip().split(None, 1)[0].upper() if sql.strip() else ""
        if keyword in _READ_KEYWORDS:
            return self.many().fetch()  # type: ignore
        return self.execute()  # type: ignore

    def quote(self, value: Any) -> str:
        """把值转义为 SQL 字符串字面量"""
        text = str(value)
        if self.driver == Drivers.MYSQL:  # type: ignore
            return "'" + self.connect().escape_string(text) + "'"  # type: ignore
        return "'" + text.replace("'", "''") + "'"

    def test_connection(self) -> bool:
        try:
            row = self.query("SELECT 1 AS ok").as_array().single().fetch()  # type: ignore
        except Exception as e:
            self.logger.error(f"数据库连接测试失败: {e}")  # type: ignore
            return False
        return bool(row)

    def fetch_dataframe(self) -> pd.DataFrame:
        """以 DataFrame 返回当前查询的全部结果；查询失败时返回空 DataFrame"""
        rows: Union[List[Dict[str, Any]], bool] = self.as_array().many().fetch()  # type: ignore
        if not rows:
            return pd.DataFrame()
        return pd.DataFrame(rows)

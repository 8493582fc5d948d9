from typing import Any, Dict, List

from gridkit.common.constants import Drivers
from gridkit.common.exceptions import DatabaseError, ValidationError


class SchemaManagementMixin:
    """表结构查询Mixin

    职责：
    ----
    按驱动读取表的列定义，并统一成相同的字典结构：

    - name: 列名
    - type: 数据库原始类型（如 varchar(255)、tinyint(1)）
    - nullable: 是否允许 NULL
    - default: 默认值
    - is_primary_key: 是否主键列
    - extra: 额外信息（如 auto_increment）

    各驱动的读取方式：
    --------------
    - MySQL: DESCRIBE
    - PostgreSQL: information_schema.columns + 主键约束
    - SQLite: PRAGMA table_info
    """

    def _checked_table_name(self, table: str) -> str:
        if not self.resolver.is_safe_identifier(table):  # type: ignore
            raise ValidationError(f"非法的表名: {table}")
        return table

    def describe_table(self, table: str) -> List[Dict[str, Any]]:
        """读取表的列定义

        Raises:
            ValidationError: 表名不合法
            DatabaseError: 表不存在或无法访问
        """
        table = self._checked_table_name(table)
        readers = {
            Drivers.MYSQL: self._describe_mysql,
            Drivers.PGSQL: self._describe_pgsql,
            Drivers.SQLITE: self._describe_sqlite,
        }
        columns = readers[self.driver](table)  # type: ignore
        if not columns:
            self.logger.error(f"无法读取表结构: {table}")  # type: ignore
            raise DatabaseError(f"表不存在或无法访问: {table}")
        return columns

    def _describe_mysql(self, table: str) -> List[Dict[str, Any]]:
        rows = self.query(f"DESCRIBE {self.resolver.quote(table)}").as_array().fetch()  # type: ignore
        if not rows:
            return []
        return [
            {
                "name": row["Field"],
                "type": str(row["Type"]),
                "nullable": row["Null"] == "YES",
                "default": row["Default"],
                "is_primary_key": row["Key"] == "PRI",
                "extra": row["Extra"] or "",
            }
            for row in rows
        ]

    def _describe_pgsql(self, table: str) -> List[Dict[str, Any]]:
        rows = (
            self.query(  # type: ignore
                "SELECT column_name, data_type, is_nullable, column_default "
                "FROM information_schema.columns "
                "WHERE table_name = ? AND table_schema = current_schema() "
                "ORDER BY ordinal_position"
            )
            .bind([table])
            .as_array()
            .fetch()
        )
        if not rows:
            return []

        pk_rows = (
            self.query(  # type: ignore
                "SELECT kcu.column_name "
                "FROM information_schema.table_constraints tc "
                "JOIN information_schema.key_column_usage kcu "
                "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
                "WHERE tc.constraint_type = 'PRIMARY KEY' "
                "AND tc.table_name = ? AND tc.table_schema = current_schema()"
            )
            .bind([table])
            .as_array()
            .fetch()
        ) or []
        primary_keys = {row["column_name"] for row in pk_rows}

        columns = []
        for row in rows:
            default = row["column_default"]
            columns.append(
                {
                    "name": row["column_name"],
                    "type": row["data_type"],
                    "nullable": row["is_nullable"] == "YES",
                    "default": default,
                    "is_primary_key": row["column_name"] in primary_keys,
                    "extra": "auto_increment" if str(default or "").startswith("nextval(") else "",
                }
            )
        return columns

    def _describe_sqlite(self, table: str) -> List[Dict[str, Any]]:
        rows = self.query(f"PRAGMA table_info({self.resolver.quote(table)})").as_array().fetch()  # type: ignore
        if not rows:
            return []
        columns = []
        for row in rows:
            is_pk = bool(row["pk"])
            columns.append(
                {
                    "name": row["name"],
                    "type": row["type"] or "",
                    "nullable": not row["notnull"] and not is_pk,
                    "default": row["dflt_value"],
                    "is_primary_key": is_pk,
                    "extra": "auto_increment" if is_pk and str(row["type"]).upper() == "INTEGER" else "",
                }
            )
        return columns

    def get_column_names(self, table: str) -> List[str]:
        return [column["name"] for column in self.describe_table(table)]

    def get_primary_key(self, table: str):
        """返回第一个主键列名，没有主键时返回 None"""
        for column in self.describe_table(table):
            if column["is_primary_key"]:
                return column["name"]
        return None

    def table_exists(self, table: str) -> bool:
        table = self._checked_table_name(table)
        if self.driver == Drivers.SQLITE:  # type: ignore
            sql = "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?"
        elif self.driver == Drivers.MYSQL:  # type: ignore
            sql = (
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = DATABASE() AND table_name = ?"
            )
        else:
            sql = (
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = current_schema() AND table_name = ?"
            )
        row = self.query(sql).bind([table]).single().fetch()  # type: ignore
        return bool(row)

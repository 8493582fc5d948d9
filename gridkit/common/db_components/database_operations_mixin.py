"""
数据库操作Mixin - 提供链式语句执行、事务与批量写入接口

SQL 一律以 ? 和 :name 两种占位符书写，执行前按驱动的参数风格转换。
"""

import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from gridkit.common.constants import Drivers
from gridkit.common.exceptions import (
    DatabaseError,
    ExecutionError,
    UnsupportedOperationError,
)
from gridkit.common.logging_utils import describe_params


class ParamKind(Enum):
    """参数绑定类型"""

    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    NULL = "null"
    BYTES = "bytes"
    STR = "str"


def detect_param_kind(value: Any) -> ParamKind:
    """根据值的运行时类型确定绑定类型，未知类型按文本绑定"""
    if value is None or value is pd.NaT:
        return ParamKind.NULL
    if isinstance(value, (bool, np.bool_)):
        return ParamKind.BOOL
    if isinstance(value, (int, np.integer)):
        return ParamKind.INT
    if isinstance(value, (float, np.floating)):
        return ParamKind.NULL if np.isnan(value) else ParamKind.FLOAT
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ParamKind.BYTES
    return ParamKind.STR


def convert_placeholders(sql: str, named: bool) -> str:
    """把 ? / :name 占位符转换为 %s / %(name)s

    引号内的内容和 PostgreSQL 的 :: 类型转换保持不动，
    所有字面量 % 都转义为 %%。
    """
    out = []
    quote = None
    i = 0
    length = len(sql)
    while i < length:
        ch = sql[i]
        if ch == "%":
            out.append("%%")
        elif quote:
            out.append(ch)
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
            out.append(ch)
        elif ch == "?" and not named:
            out.append("%s")
        elif ch == ":" and named:
            if i + 1 < length and sql[i + 1] == ":":
                out.append("::")
                i += 2
                continue
            j = i + 1
            while j < length and (sql[j].isalnum() or sql[j] == "_"):
                j += 1
            if j > i + 1 and not sql[i + 1].isdigit():
                out.append(f"%({sql[i + 1:j]})s")
                i = j
                continue
            out.append(ch)
        else:
            out.append(ch)
        i += 1
    return "".join(out)


class Record(dict):
    """支持属性访问的结果行"""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def __setattr__(self, name, value):
        self[name] = value


Params = Union[List[Any], Dict[str, Any]]


class DatabaseOperationsMixin:
    """数据库操作Mixin

    职责：
    ----
    提供链式的语句执行接口，以及事务、批量插入、upsert/replace 和查询性能记录。

    使用方式：
    --------
    ```python
    rows = db.query("SELECT * FROM users WHERE age > ?").bind([18]).fetch()
    user = db.query("SELECT * FROM users WHERE id = :id").bind({"id": 1}).single().fetch()
    new_id = db.query("INSERT INTO users (name) VALUES (?)").bind("alice").execute()
    ```

    返回值约定：
    ----------
    - fetch: 单行模式返回行或 None，多行模式返回列表（可能为空）；驱动报错时记录日志并返回 False
    - execute: INSERT 返回新 id（驱动无法提供时为 True），UPDATE/DELETE 返回影响行数，
      其它语句返回 True；驱动报错时抛出 ExecutionError
    - transaction/commit/rollback: 成功返回 True，失败记录日志并返回 False

    设计特点：
    --------
    1. **方言无关**: SQL 统一使用 ? 与 :name，执行前按驱动转换
    2. **类型绑定**: 布尔、整数、浮点、空值、二进制按各自类型绑定，其余按文本
    3. **显式事务**: 连接处于自动提交模式，事务由 BEGIN/COMMIT/ROLLBACK 控制，不支持嵌套
    4. **性能记录**: 开启后记录每条语句的耗时，日志只在显式清空时丢弃
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._current_query: Optional[str] = None
        self._query_params: Optional[Params] = None
        self._fetch_single = False
        self._fetch_mode = "object"
        self._in_transaction = False
        self._last_insert_id = None
        self._profiling_enabled = False
        self._query_log: List[Dict[str, Any]] = []

    # ============================================================================
    # 链式接口
    # ============================================================================

    def query(self, sql: str):
        """设置待执行的语句，并重置参数、单行标志和行形态"""
        self._current_query = sql
        self._query_params = None
        self._fetch_single = False
        self._fetch_mode = "object"
        return self

    def bind(self, params: Any):
        """绑定参数

        列表/元组为位置参数，字典为命名参数（键可带或不带前导冒号），
        其它单个值视为只有一个位置参数。
        """
        if isinstance(params, dict):
            self._query_params = {str(k).lstrip(":"): v for k, v in params.items()}
        elif isinstance(params, (list, tuple)):
            self._query_params = list(params)
        else:
            self._query_params = [params]
        return self

    def single(self):
        self._fetch_single = True
        return self

    def many(self):
        self._fetch_single = False
        return self

    def as_array(self):
        """结果行返回普通字典"""
        self._fetch_mode = "array"
        return self

    def as_object(self):
        """结果行返回支持属性访问的 Record（默认）"""
        self._fetch_mode = "object"
        return self

    def reset(self):
        """清空当前语句、参数和取数模式"""
        self._current_query = None
        self._query_params = None
        self._fetch_single = False
        self._fetch_mode = "object"
        return self

    # ============================================================================
    # 执行
    # ============================================================================

    def fetch(self, limit: Optional[int] = None):
        """执行当前查询并返回结果

        Args:
            limit: 为 1 时强制单行模式，大于 1 时强制多行模式

        Returns:
            单行模式：行或 None；多行模式：列表；驱动报错：False
        """
        sql = self._require_query()
        if limit == 1:
            self._fetch_single = True
        elif limit is not None and limit > 1:
            self._fetch_single = False

        start = time.perf_counter()
        try:
            cursor = self._run(sql, self._query_params)
        except self.profile.error_class as e:
            self.logger.error(
                f"SQL查询失败: {e}\nSQL: {sql}\n参数: {describe_params(self._query_params)}"
            )
            return False

        try:
            columns = [d[0] for d in cursor.description] if cursor.description else []
            if self._fetch_single:
                raw = cursor.fetchone()
                result = self._make_row(columns, raw) if raw is not None else None
            else:
                result = [self._make_row(columns, raw) for raw in cursor.fetchall()]
        except self.profile.error_class as e:
            self.logger.error(f"读取查询结果失败: {e}\nSQL: {sql}")
            return False
        finally:
            cursor.close()

        self._record_query(sql, self._query_params, start)
        return result

    def execute(self):
        """执行当前的写语句

        Raises:
            ExecutionError: 驱动执行失败
        """
        sql = self._require_query()
        keyword = sql.lstrip().split(None, 1)[0].upper() if sql.strip() else ""

        start = time.perf_counter()
        try:
            cursor = self._run(sql, self._query_params)
        except self.profile.error_class as e:
            self.logger.error(
                f"SQL执行失败: {e}\nSQL: {sql}\n参数: {describe_params(self._query_params)}"
            )
            raise ExecutionError(f"SQL执行失败: {e}") from e

        try:
            if keyword == "INSERT":
                result = self._inserted_id(cursor, sql)
            elif keyword in ("UPDATE", "DELETE"):
                result = cursor.rowcount
            else:
                result = True
        finally:
            cursor.close()

        self._record_query(sql, self._query_params, start)
        return result

    def _inserted_id(self, cursor, sql: str):
        if "RETURNING" in sql.upper() and cursor.description:
            row = cursor.fetchone()
            new_id = row[0] if row else None
        elif self.profile.returns_last_id:
            new_id = cursor.lastrowid
        else:
            new_id = None
        if new_id:
            self._last_insert_id = new_id
            return new_id
        return True

    def get_last_id(self):
        """最近一次 INSERT 得到的 id"""
        return self._last_insert_id

    def _require_query(self) -> str:
        if not self._current_query:
            raise RuntimeError("未设置查询语句，请先调用 query()")
        return self._current_query

    def _run(self, sql: str, params: Optional[Params]):
        """转换占位符并在新游标上执行，调用方负责关闭游标"""
        driver_sql, driver_params = self._prepare_statement(sql, params)
        cursor = self.connect().cursor()
        try:
            if driver_params is None:
                cursor.execute(driver_sql)
            else:
                cursor.execute(driver_sql, driver_params)
        except Exception:
            cursor.close()
            raise
        return cursor

    def _prepare_statement(self, sql: str, params: Optional[Params]) -> Tuple[str, Any]:
        if not params:
            return sql, None
        if isinstance(params, dict):
            adapted = {k: self._adapt_param(v) for k, v in params.items()}
            if self.profile.paramstyle == "format":
                return convert_placeholders(sql, named=True), adapted
            return sql, adapted
        adapted = tuple(self._adapt_param(v) for v in params)
        if self.profile.paramstyle == "format":
            return convert_placeholders(sql, named=False), adapted
        return sql, adapted

    def _adapt_param(self, value: Any) -> Any:
        kind = detect_param_kind(value)
        if kind is ParamKind.NULL:
            return None
        if kind is ParamKind.BOOL:
            return bool(value) if self.profile.native_bool else int(bool(value))
        if kind is ParamKind.INT:
            return int(value)
        if kind is ParamKind.FLOAT:
            return float(value)
        if kind is ParamKind.BYTES:
            return bytes(value)
        return value if isinstance(value, str) else str(value)

    def _make_row(self, columns: Sequence[str], values: Sequence[Any]):
        row = dict(zip(columns, values))
        if self._fetch_mode == "object":
            return Record(row)
        return row

    # ============================================================================
    # 事务
    # ============================================================================

    def transaction(self) -> bool:
        """开启事务；已在事务中时记录警告并返回 False"""
        if self._in_transaction:
            self.logger.warning("已存在进行中的事务，不支持嵌套事务")
            return False
        try:
            self._execute_control(self.profile.begin_sql)
        except (self.profile.error_class + (DatabaseError,)) as e:
            self.logger.error(f"开启事务失败: {e}")
            return False
        self._in_transaction = True
        self.logger.debug("事务已开启")
        return True

    def commit(self) -> bool:
        if not self._in_transaction:
            self.logger.warning("没有进行中的事务，忽略提交")
            return False
        try:
            self._execute_control("COMMIT")
        except (self.profile.error_class + (DatabaseError,)) as e:
            self.logger.error(f"提交事务失败: {e}")
            return False
        self._in_transaction = False
        self.logger.debug("事务已提交")
        return True

    def rollback(self) -> bool:
        if not self._in_transaction:
            self.logger.warning("没有进行中的事务，忽略回滚")
            return False
        try:
            self._execute_control("ROLLBACK")
        except (self.profile.error_class + (DatabaseError,)) as e:
            self.logger.error(f"回滚事务失败: {e}")
            return False
        finally:
            self._in_transaction = False
        self.logger.debug("事务已回滚")
        return True

    def in_transaction(self) -> bool:
        return self._in_transaction

    @contextmanager
    def atomic(self):
        """事务上下文管理器

        块内抛出异常时回滚并重新抛出，正常退出时提交。

        Raises:
            DatabaseError: 无法开启或提交事务
        """
        if not self.transaction():
            raise DatabaseError("无法开启事务")
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        if not self.commit():
            raise DatabaseError("事务提交失败")

    def _execute_control(self, statement: str):
        cursor = self.connect().cursor()
        try:
            cursor.execute(statement)
        finally:
            cursor.close()

    # ============================================================================
    # 批量写入
    # ============================================================================

    def insert_batch(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        chunk_size: int = 500,
    ) -> Union[int, bool]:
        """多行 INSERT

        每一行的长度必须与列数一致，否则不执行任何语句直接返回 False。
        超过 chunk_size 的批次拆成多条语句，并在同一事务中执行。

        Returns:
            int: 插入的行数
        """
        if not columns or not rows:
            self.logger.warning(f"批量插入 {table} 的列或数据为空，跳过")
            return False

        width = len(columns)
        for index, row in enumerate(rows):
            if len(row) != width:
                self.logger.error(
                    f"批量插入 {table} 第 {index} 行的值个数 {len(row)} 与列数 {width} 不一致"
                )
                return False

        column_sql = ", ".join(self.resolver.column_sql(c) for c in columns)
        row_placeholder = "(" + ", ".join(["?"] * width) + ")"
        chunks = [rows[i:i + chunk_size] for i in range(0, len(rows), chunk_size)]

        def _insert_chunks():
            for chunk in chunks:
                sql = (
                    f"INSERT INTO {self.resolver.table_sql(table)} ({column_sql}) VALUES "
                    + ", ".join([row_placeholder] * len(chunk))
                )
                self.query(sql).bind([v for row in chunk for v in row]).execute()

        if len(chunks) > 1 and not self._in_transaction:
            with self.atomic():
                _insert_chunks()
        else:
            _insert_chunks()

        self.logger.debug(f"批量插入 {table}: {len(rows)} 行")
        return len(rows)

    def insert_dataframe(self, table: str, df: pd.DataFrame, chunk_size: int = 500) -> int:
        """将 DataFrame 写入表，列名即表列名；NaN/NaT 写为 NULL"""
        if df is None or df.empty:
            self.logger.info(f"DataFrame 为空，跳过写入 {table}")
            return 0
        clean = df.astype(object).where(pd.notna(df), None)
        rows = list(clean.itertuples(index=False, name=None))
        result = self.insert_batch(table, [str(c) for c in df.columns], rows, chunk_size)
        return result if result is not False else 0

    def upsert(
        self,
        table: str,
        insert_data: Dict[str, Any],
        update_data: Dict[str, Any],
        conflict_columns: Optional[Sequence[str]] = None,
    ):
        """插入或在冲突时更新

        Args:
            table: 目标表
            insert_data: 插入的列与值
            update_data: 冲突时更新的列与值
            conflict_columns: 冲突判断列；PostgreSQL 必须提供

        Raises:
            ValueError: PostgreSQL 未提供冲突列
            UnsupportedOperationError: 驱动不支持 upsert
        """
        if not insert_data or not update_data:
            self.logger.warning(f"upsert {table} 的插入或更新数据为空，跳过")
            return False

        style = self.profile.upsert_style
        if style is None:
            raise UnsupportedOperationError(f"{self.driver} 不支持 upsert")

        q = self.resolver.column_sql
        sql = (
            f"INSERT INTO {self.resolver.table_sql(table)} "
            f"({', '.join(q(c) for c in insert_data)}) "
            f"VALUES ({', '.join(['?'] * len(insert_data))})"
        )
        set_clause = ", ".join(f"{q(c)} = ?" for c in update_data)

        if style == "mysql":
            sql += f" ON DUPLICATE KEY UPDATE {set_clause}"
        else:
            if conflict_columns:
                target = f" ({', '.join(q(c) for c in conflict_columns)})"
            elif self.driver == Drivers.PGSQL:
                raise ValueError("PostgreSQL 的 upsert 必须指定冲突列 conflict_columns")
            else:
                target = ""
            sql += f" ON CONFLICT{target} DO UPDATE SET {set_clause}"

        params = list(insert_data.values()) + list(update_data.values())
        return self.query(sql).bind(params).execute()

    def replace(self, table: str, data: Dict[str, Any]):
        """按主键/唯一键整行替换

        Raises:
            UnsupportedOperationError: 驱动不支持 replace（PostgreSQL）
        """
        keyword = self.profile.replace_keyword
        if keyword is None:
            raise UnsupportedOperationError(f"{self.driver} 不支持 replace，请改用 upsert")
        if not data:
            self.logger.warning(f"replace {table} 的数据为空，跳过")
            return False

        sql = (
            f"{keyword} {self.resolver.table_sql(table)} "
            f"({', '.join(self.resolver.column_sql(c) for c in data)}) "
            f"VALUES ({', '.join(['?'] * len(data))})"
        )
        return self.query(sql).bind(list(data.values())).execute()

    # ============================================================================
    # 查询性能记录
    # ============================================================================

    def enable_profiling(self):
        self._profiling_enabled = True
        return self

    def disable_profiling(self):
        self._profiling_enabled = False
        return self

    def get_query_log(self) -> List[Dict[str, Any]]:
        """已记录的语句：sql、params、duration_ms、timestamp"""
        return list(self._query_log)

    def clear_query_log(self):
        self._query_log.clear()
        return self

    def _record_query(self, sql: str, params: Optional[Params], start: float):
        duration_ms = (time.perf_counter() - start) * 1000
        self.logger.debug(f"SQL ({duration_ms:.2f}ms): {sql}")
        if not self._profiling_enabled:
            return
        self._query_log.append(
            {
                "sql": sql,
                "params": dict(params) if isinstance(params, dict) else list(params or []),
                "duration_ms": round(duration_ms, 3),
                "timestamp": time.time(),
            }
        )

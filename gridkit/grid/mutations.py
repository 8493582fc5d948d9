#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
写操作处理

新增、编辑、删除、批量操作、行内编辑、行操作回调、文件上传，
以及只读的单条记录读取与 select2 选项查询。

所有写操作都针对不带别名的基础表，配置中的固定条件会去掉表前缀后一并应用。
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from gridkit.common.exceptions import DatabaseError, ValidationError
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.logging_utils import get_logger
from gridkit.grid.actions import (
    ActionCallbackParams,
    AddRecordParams,
    BulkActionParams,
    DeleteRecordParams,
    EditRecordParams,
    FetchLookupOptionsParams,
    FetchRecordParams,
    InlineEditParams,
    UploadFileParams,
)
from gridkit.grid.callbacks import CallbackRegistry, FileStorage, RegisteredCallback
from gridkit.grid.config import GridConfig
from gridkit.grid.query_assembler import append_conditions, parse_lookup_columns, render_conditions
from gridkit.grid.query_builder import Condition
from gridkit.grid.results import GridResult
from gridkit.grid.schema import TableSchema
from gridkit.grid.validator import FieldValidator

_PLACEHOLDER_RE = re.compile(r"\{([a-zA-Z0-9_]+)\}")
_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

DEFAULT_LOOKUP_LIMIT = 50


def substitute_query_parameters(query: str, record_data: Dict[str, Any], quote: Callable[[str], str]) -> str:
    """用记录数据替换查询中的 {field} 占位符

    数字原样写入，其它值经 quote 转义为字符串字面量，记录中没有的字段写为 NULL。
    """

    def _replace(match):
        value = record_data.get(match.group(1))
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (int, float)) or _NUMERIC_RE.match(str(value).strip()):
            return str(value).strip()
        return quote(str(value))

    return _PLACEHOLDER_RE.sub(_replace, query)


class MutationHandler:
    """写操作处理器

    职责：
    ----
    1. 字段名清洗、按表结构验证与转换、排除主键
    2. 去掉表前缀后应用固定条件，并与主键条件以 AND 连接
    3. 批量操作在一个事务中执行，任一项失败则整体回滚
    4. 调用方登记的批量/行操作回调按固定参数约定调用

    每次调用都是独立的，处理器本身不保存请求状态。
    """

    def __init__(
        self,
        db,
        config: GridConfig,
        schema: TableSchema,
        callbacks: Optional[CallbackRegistry] = None,
        storage: Optional[FileStorage] = None,
    ):
        self.db = db
        self.config = config
        self.schema = schema
        self.callbacks = callbacks or CallbackRegistry()
        self.storage = storage
        self.validator = FieldValidator(schema)
        self.resolver = db.resolver
        self.logger = get_logger(__name__)

    @property
    def base_table(self) -> str:
        return self.config.base_table

    @property
    def primary_key(self) -> str:
        """写操作使用的不带前缀的主键列"""
        return TableNameResolver.unqualify(self.config.get_primary_key())

    # ------------------------------------------------------------------
    # 辅助
    # ------------------------------------------------------------------

    def _write_where(self, record_id: int) -> Tuple[str, List[Any]]:
        group = render_conditions(self.config.get_where(), self.resolver, strip_alias=True)
        group.add(Condition(f"{self.resolver.quote(self.primary_key)} = ?", [record_id]))
        return group.render()

    def _store_files(self, files: Dict[str, Any]) -> Dict[str, str]:
        uploads = {k: v for k, v in (files or {}).items() if v is not None}
        if not uploads:
            return {}
        if self.storage is None:
            raise ValidationError("未配置文件存储，无法处理上传文件")
        stored = {}
        for raw_name, upload in uploads.items():
            column = TableNameResolver.unqualify(TableNameResolver.sanitize_column_name(raw_name))
            if column not in self.schema:
                self.logger.debug(f"忽略表结构中不存在的上传字段: {raw_name}")
                continue
            stored[column] = self.storage.save(column, upload, self.config.get_file_upload())
        return stored

    def _collect_fields(self, data: Dict[str, Any], files: Dict[str, Any]) -> Dict[str, Any]:
        fields = {}
        for raw_name, value in data.items():
            name = TableNameResolver.sanitize_column_name(raw_name)
            if not name:
                continue
            fields[TableNameResolver.unqualify(name)] = value
        fields.update(self._store_files(files))
        return self.validator.validate_fields(fields, exclude=[self.primary_key])

    def _require_id(self, record_id: Optional[int]) -> int:
        if record_id is None:
            raise ValidationError("需要有效的记录 ID")
        return record_id

    def _delete_one(self, record_id: int) -> int:
        where_sql, params = self._write_where(record_id)
        sql = f"DELETE FROM {self.resolver.quote(self.base_table)} WHERE {where_sql}"
        return self.db.query(sql).bind(params).execute()

    # ------------------------------------------------------------------
    # 写操作
    # ------------------------------------------------------------------

    def add_record(self, params: AddRecordParams) -> GridResult:
        fields = self._collect_fields(params.data, params.files)
        if not fields:
            raise ValidationError("没有可保存的有效字段")

        columns = ", ".join(self.resolver.quote(c) for c in fields)
        placeholders = ", ".join(["?"] * len(fields))
        sql = f"INSERT INTO {self.resolver.quote(self.base_table)} ({columns}) VALUES ({placeholders})"
        new_id = self.db.query(sql).bind(list(fields.values())).execute()

        self.logger.info(f"{self.base_table} 新增记录: {new_id}")
        return GridResult.ok("记录已添加", id=None if new_id is True else new_id)

    def edit_record(self, params: EditRecordParams) -> GridResult:
        record_id = self._require_id(params.id)
        fields = self._collect_fields(params.data, params.files)
        if not fields:
            raise ValidationError("没有可保存的有效字段")

        set_clause = ", ".join(f"{self.resolver.quote(c)} = ?" for c in fields)
        where_sql, where_params = self._write_where(record_id)
        sql = f"UPDATE {self.resolver.quote(self.base_table)} SET {set_clause} WHERE {where_sql}"
        affected = self.db.query(sql).bind(list(fields.values()) + where_params).execute()

        self.logger.info(f"{self.base_table} 更新记录 {record_id}: 影响 {affected} 行")
        return GridResult.ok("记录已更新", affected_rows=affected)

    def delete_record(self, params: DeleteRecordParams) -> GridResult:
        record_id = self._require_id(params.id)
        affected = self._delete_one(record_id)
        if affected == 0:
            return GridResult.ok("记录不存在或已删除", affected_rows=0)
        self.logger.info(f"{self.base_table} 删除记录 {record_id}")
        return GridResult.ok("记录已删除", affected_rows=affected)

    def _bulk_delete(self, selected_ids: List[int], db, base_table: str) -> int:
        return sum(self._delete_one(record_id) for record_id in selected_ids)

    def _resolve_bulk(self, action: str) -> RegisteredCallback:
        configured = self.config.get_bulk_actions()
        registered = self.callbacks.get_bulk(action)
        if registered is not None:
            return registered
        if action == "delete" and "delete" in configured:
            action_conf = configured["delete"]
            return RegisteredCallback(self._bulk_delete, action_conf.get("success_message"), action_conf.get("error_message"))
        raise ValidationError(f"未知的批量操作: {action}")

    def bulk_action(self, params: BulkActionParams) -> GridResult:
        """在一个事务中执行批量操作

        回调抛出异常或返回 False 时整体回滚；
        回调返回整数时作为影响行数，否则以所选记录数计。
        """
        if not self.config.bulk_actions_enabled():
            raise ValidationError("批量操作未启用")
        handler = self._resolve_bulk(params.action)
        error_message = handler.error_message or "批量操作失败"
        ids = params.selected_ids

        if not self.db.transaction():
            raise DatabaseError("无法开启事务")
        try:
            result = handler.callback(ids, self.db, self.base_table)
        except Exception as e:
            self.db.rollback()
            self.logger.error(f"批量操作 {params.action} 失败，已回滚: {e}", exc_info=True)
            return GridResult.fail(error_message)

        if result is False:
            self.db.rollback()
            self.logger.warning(f"批量操作 {params.action} 返回失败，已回滚")
            return GridResult.fail(error_message)

        if not self.db.commit():
            self.db.rollback()
            return GridResult.fail(error_message)

        affected = result if isinstance(result, int) and not isinstance(result, bool) else len(ids)
        self.logger.info(f"批量操作 {params.action} 完成: {affected} 条")
        return GridResult.ok(handler.success_message or "批量操作已完成", affected_rows=affected)

    def inline_edit(self, params: InlineEditParams) -> GridResult:
        record_id = self._require_id(params.id)
        if not params.field:
            raise ValidationError("缺少字段名")

        column = TableNameResolver.unqualify(params.field)
        allowed = self.config.get_inline_editable()
        allowed_unqualified = {TableNameResolver.unqualify(a) for a in allowed}
        if params.field not in allowed and column not in allowed_unqualified:
            raise ValidationError(f"字段 {params.field} 不允许行内编辑")
        if column == self.primary_key:
            raise ValidationError("主键不允许编辑")

        value = self.validator.validate_field(column, params.value)
        where_sql, where_params = self._write_where(record_id)
        sql = f"UPDATE {self.resolver.quote(self.base_table)} SET {self.resolver.quote(column)} = ? WHERE {where_sql}"
        affected = self.db.query(sql).bind([value] + where_params).execute()
        return GridResult.ok("字段已更新", affected_rows=affected, data={column: value})

    def action_callback(self, params: ActionCallbackParams) -> GridResult:
        if not params.action or params.row_id is None:
            raise ValidationError("需要有效的操作名和行 ID")
        registered = self.callbacks.get_row(params.action)
        if registered is None:
            raise ValidationError(f"找不到操作回调: {params.action}")

        error_message = registered.error_message or "操作失败"
        try:
            result = registered.callback(params.row_id, params.row_data, self.db, self.base_table)
        except Exception as e:
            self.logger.error(f"行操作 {params.action} 执行失败: {e}", exc_info=True)
            return GridResult.fail(error_message)

        if result is False:
            return GridResult.fail(error_message)
        data = None if result is True or result is None else result
        return GridResult.ok(registered.success_message or "操作已完成", data=data)

    def upload_file(self, params: UploadFileParams) -> GridResult:
        if self.storage is None:
            return GridResult.fail("未配置文件存储")
        if not params.field or params.field not in self.schema:
            raise ValidationError(f"未知的上传字段: {params.field}")
        if params.upload is None:
            raise ValidationError("没有收到上传文件")
        column = TableNameResolver.unqualify(params.field)
        filename = self.storage.save(column, params.upload, self.config.get_file_upload())
        return GridResult.ok("文件已上传", data={"field": column, "filename": filename})

    # ------------------------------------------------------------------
    # 只读
    # ------------------------------------------------------------------

    def fetch_record(self, params: FetchRecordParams) -> GridResult:
        record_id = self._require_id(params.id)
        where_sql, where_params = self._write_where(record_id)
        sql = f"SELECT * FROM {self.resolver.quote(self.base_table)} WHERE {where_sql}"
        row = self.db.query(sql).bind(where_params).as_array().single().fetch()
        if row is False:
            return GridResult.fail("读取记录失败")
        if row is None:
            return GridResult.fail("记录不存在")
        return GridResult.ok(data=row)

    def _find_lookup(self, params: FetchLookupOptionsParams):
        for info in self.schema:
            if not info.is_lookup:
                continue
            if params.field and info.name == TableNameResolver.unqualify(params.field):
                return info
            if params.query and params.query == info.lookup_query.strip():
                return info
        raise ValidationError("未配置的 select2 查询")

    def fetch_lookup_options(self, params: FetchLookupOptionsParams) -> GridResult:
        """select2 选项

        查询只能来自列配置；请求只能通过字段名或完全相同的查询文本选中它。
        """
        info = self._find_lookup(params)
        settings = info.settings
        query = substitute_query_parameters(info.lookup_query, params.record_data, self.db.quote)
        id_column, label_column = parse_lookup_columns(query)

        conditions, bind = [], []
        if params.value_filter is not None:
            conditions.append(f"{id_column} = ?")
            bind.append(params.value_filter)
        min_chars = int(settings.get("min_search_chars", 0) or 0)
        if params.search and len(params.search) >= min_chars:
            conditions.append(f"{self.resolver.text_sql(label_column or 'Label')} LIKE ?")
            bind.append(f"%{params.search}%")

        max_results = params.max_results
        if max_results is None:
            max_results = int(settings.get("max_results", DEFAULT_LOOKUP_LIMIT) or 0)

        sql = append_conditions(query, conditions, max_results)
        rows = self.db.query(sql).bind(bind).as_array().fetch()
        if rows is False:
            return GridResult.fail("读取选项失败", results=[])
        return GridResult.ok(results=rows)

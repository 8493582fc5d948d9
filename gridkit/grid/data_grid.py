#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
DataGrid 门面

把表格配置、数据库管理器、表结构和回调绑定在一起，
对外提供按操作名分发的统一入口和供渲染层读取的只读数据。
"""

from typing import Any, Dict, List, Mapping, Optional

from gridkit.common.config_manager import load_grid_definition
from gridkit.common.constants import Aggregations
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.exceptions import ValidationError
from gridkit.common.logging_utils import get_logger
from gridkit.grid.actions import FetchDataParams
from gridkit.grid.callbacks import CallbackRegistry, FileStorage
from gridkit.grid.config import GridConfig
from gridkit.grid.dispatcher import ActionDispatcher
from gridkit.grid.mutations import MutationHandler, substitute_query_parameters
from gridkit.grid.query_assembler import QueryAssembler
from gridkit.grid.results import GridResult
from gridkit.grid.schema import TableSchema


class DataGrid:
    """数据表格

    职责：
    ----
    1. 绑定时读取表结构、叠加列配置中的类型覆盖，并冻结配置
    2. 数据页读取：数据查询 + 计数查询 + select2 标签补充
    3. 表尾聚合：全部过滤结果与当前页两种范围
    4. 写操作委托给 MutationHandler，请求分发委托给 ActionDispatcher

    使用示例：
    --------
    ```python
    db = create_sqlite_manager("app.db")
    config = GridConfig("users").columns({"name": "姓名", "email": "邮箱"}).sortable(["name"])
    grid = DataGrid(db, config)

    response = grid.handle("fetch_data", {"page": 1, "search": "ali"})
    ```

    select2 标签在数据查询之后单独读取，不在同一事务中；
    读取失败只记录警告，数据行照常返回（不带标签）。
    """

    def __init__(
        self,
        db,
        config: GridConfig,
        storage: Optional[FileStorage] = None,
        callbacks: Optional[CallbackRegistry] = None,
    ):
        """绑定表格

        Args:
            db: DBManager 实例
            config: 表格配置，绑定后冻结
            storage: 文件存储协作者，不处理上传时可为 None
            callbacks: 回调注册表，默认从配置中声明的 callback 构建

        Raises:
            ValidationError: 配置中没有设置表
            DatabaseError: 表不存在或无法读取表结构
        """
        if not config.base_table:
            raise ValidationError("表格配置必须先设置表")

        self.logger = get_logger(__name__)
        self.db = db
        self.config = config

        self.schema = TableSchema.from_database(db, config.base_table)
        self.schema.apply_overrides(config.get_column_settings(), config.table_alias)
        if not config.get_columns():
            config.columns(self.schema.default_display_columns())
        config.freeze()

        self.callbacks = callbacks or CallbackRegistry.from_config(config)
        self.assembler = QueryAssembler(config, db.resolver)
        self.mutations = MutationHandler(db, config, self.schema, self.callbacks, storage)

        self.dispatcher = ActionDispatcher(self)

        self.logger.debug(f"表格已绑定: {config.table_name}，{len(config.get_columns())} 列")

    @classmethod
    def from_definition(
        cls,
        db,
        path: str,
        storage: Optional[FileStorage] = None,
        callbacks: Optional[CallbackRegistry] = None,
    ) -> "DataGrid":
        """从 YAML 表格定义文件构建"""
        return cls(db, GridConfig.from_dict(load_grid_definition(path)), storage, callbacks)

    # ============================================================================
    # 供渲染层读取
    # ============================================================================

    def get_columns(self) -> Dict[str, str]:
        return self.config.get_columns()

    def get_table_schema(self) -> Dict[str, Dict[str, Any]]:
        return self.schema.to_dict()

    def get_css_classes(self) -> Dict[str, str]:
        return self.config.get_css_classes()

    # ============================================================================
    # 读取
    # ============================================================================

    def fetch_data(self, params: FetchDataParams) -> GridResult:
        page, per_page = QueryAssembler.normalize_paging(params.page, params.per_page, self.config.get_per_page())
        sql, bind = self.assembler.data_query(
            params.search, params.search_column, params.sort_column, params.sort_direction, page, per_page
        )
        rows = self.db.query(sql).bind(bind).as_array().fetch()
        if rows is False:
            return GridResult.fail("读取数据失败")

        count_sql, count_bind = self.assembler.count_query(params.search, params.search_column)
        count_row = self.db.query(count_sql).bind(count_bind).as_array().single().fetch()
        if count_row is False:
            return GridResult.fail("统计记录数失败")
        total = int(_lower_keys(count_row).get("total") or 0) if count_row else 0

        self._attach_lookup_labels(rows)
        self.logger.debug(f"{self.config.table_name} 第 {page} 页: {len(rows)}/{total}")
        return GridResult.page_of(rows, total, page, per_page)

    def _attach_lookup_labels(self, rows: List[Dict[str, Any]]):
        """为 select2 列补充 <列名>_label"""
        if not rows:
            return
        for column in self.config.get_columns():
            key = self.assembler.result_key(column)
            info = self.schema.get(key)
            if info is None or not info.is_lookup:
                continue

            ids = []
            for row in rows:
                value = row.get(key)
                if value not in (None, "") and value not in ids:
                    ids.append(value)
            lookup_query = substitute_query_parameters(info.lookup_query, {}, self.db.quote)
            query = self.assembler.lookup_label_query(lookup_query, ids)
            if query is None:
                continue

            sql, bind = query
            labels = self.db.query(sql).bind(bind).as_array().fetch()
            if labels is False:
                self.logger.warning(f"读取 {key} 的 select2 标签失败，跳过")
                continue
            mapping = {}
            for label_row in labels:
                label_row = _lower_keys(label_row)
                mapping[str(label_row.get("id"))] = label_row.get("label")

            label_key = f"{TableNameResolver.unqualify(key)}_label"
            for row in rows:
                value = row.get(key)
                if value is not None and str(value) in mapping:
                    row[label_key] = mapping[str(value)]

    def fetch_aggregations(self, params: FetchDataParams) -> GridResult:
        """表尾聚合

        Returns:
            aggregations 为 {列: {column, sum?, avg?, page_sum?, page_avg?}}；
            范围为 both 时当前页的结果放在 page_sum/page_avg 下
        """
        aggregations = {column: {"column": column} for column in self.config.get_footer_aggregations()}
        if not aggregations:
            return GridResult.ok(aggregations={})

        query = self.assembler.aggregation_query(params.search, params.search_column)
        if query is not None:
            row = self.db.query(query[0]).bind(query[1]).as_array().single().fetch()
            if row is False:
                return GridResult.fail("计算聚合失败")
            self._collect_aggregates(aggregations, row, {Aggregations.SCOPE_ALL: "", Aggregations.SCOPE_BOTH: ""})

        page, per_page = QueryAssembler.normalize_paging(params.page, params.per_page, self.config.get_per_page())
        page_query = self.assembler.page_aggregation_query(
            params.search, params.search_column, params.sort_column, params.sort_direction, page, per_page
        )
        if page_query is not None:
            row = self.db.query(page_query[0]).bind(page_query[1]).as_array().single().fetch()
            if row is False:
                return GridResult.fail("计算页内聚合失败")
            self._collect_aggregates(
                aggregations, row, {Aggregations.SCOPE_PAGE: "", Aggregations.SCOPE_BOTH: "page_"}
            )

        return GridResult.ok(aggregations=aggregations)

    def _collect_aggregates(self, aggregations, row, prefixes: Dict[str, str]):
        row = _lower_keys(row or {})
        for column, agg in self.config.get_footer_aggregations().items():
            if agg["scope"] not in prefixes:
                continue
            name = QueryAssembler.aggregate_name(column).lower()
            for suffix in ("sum", "avg"):
                key = f"{name}_{suffix}"
                if key in row:
                    value = row[key]
                    aggregations[column][prefixes[agg["scope"]] + suffix] = float(value) if value is not None else 0.0

    # ============================================================================
    # 请求入口
    # ============================================================================

    def handle(self, action: Any, raw: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """处理一次请求，返回可直接序列化的结果字典"""
        return self.dispatcher.dispatch(action, raw).to_dict()


def _lower_keys(row: Mapping[str, Any]) -> Dict[str, Any]:
    """PostgreSQL 会把未加引号的别名转为小写，按小写键读取"""
    return {str(k).lower(): v for k, v in row.items()}

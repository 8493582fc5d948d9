"""
数据库管理器组件模块

通过Mixin模式把连接管理、语句执行、表结构查询和实用工具拆分到各自的组件中：

- DBManagerCore: 连接设置校验、驱动特性表、惰性连接
- DatabaseOperationsMixin: 链式语句执行、事务、批量写入、查询性能记录
- SchemaManagementMixin: 按驱动读取表结构
- UtilityMixin: count/exists/first/raw 等便捷接口
- TableNameResolver: 表名与列名的拆分、清洗和方言引用
"""

from .database_operations_mixin import (
    DatabaseOperationsMixin,
    ParamKind,
    Record,
    convert_placeholders,
    detect_param_kind,
)
from .db_manager_core import DRIVER_PROFILES, ConnectionSettings, DBManagerCore, DriverProfile
from .schema_management_mixin import SchemaManagementMixin
from .table_name_resolver import TableNameResolver
from .utility_mixin import UtilityMixin

__all__ = [
    # == 核心组件 ==
    "DBManagerCore",
    "ConnectionSettings",
    "DriverProfile",
    "DRIVER_PROFILES",
    "TableNameResolver",

    # == 功能组件 ==
    "DatabaseOperationsMixin",
    "SchemaManagementMixin",
    "UtilityMixin",

    # == 执行辅助 ==
    "ParamKind",
    "Record",
    "convert_placeholders",
    "detect_param_kind",
]

"""
数据库管理器

由各功能Mixin组合而成，对外提供统一的数据库访问接口。
"""

from typing import Any, Optional

from gridkit.common.config_manager import get_database_settings
from gridkit.common.db_components import (
    DatabaseOperationsMixin,
    DBManagerCore,
    SchemaManagementMixin,
    UtilityMixin,
)
from gridkit.common.exceptions import ConnectionError


class DBManager(
    DatabaseOperationsMixin,  # 语句执行、事务、批量写入
    SchemaManagementMixin,    # 表结构查询
    UtilityMixin,             # 实用工具
    DBManagerCore,            # 连接管理
):
    """数据库管理器

    组件构成：
    --------
    - DBManagerCore: 连接设置、驱动特性表、惰性连接
    - DatabaseOperationsMixin: query/bind/fetch/execute、transaction/commit/rollback、
      insert_batch/upsert/replace、查询性能记录
    - SchemaManagementMixin: describe_table/table_exists
    - UtilityMixin: count/exists/first/raw/quote/fetch_dataframe

    Example:
        >>> db = DBManager({"driver": "sqlite", "path": ":memory:"})
        >>> db.query("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)").execute()
        True
        >>> db.query("INSERT INTO t (name) VALUES (?)").bind("a").execute()
        1
    """

    def __init__(self, settings: Any, name: Optional[str] = None):
        """初始化 DBManager 实例

        Args:
            settings: 连接设置（ConnectionSettings、字典或带属性的对象）
            name: 连接名称
        """
        super().__init__(settings, name=name)


# ============================================================================
# 工厂函数
# ============================================================================

def create_manager(settings: Any, name: Optional[str] = None) -> DBManager:
    """按连接设置创建数据库管理器"""
    return DBManager(settings, name=name)


def create_sqlite_manager(path: str = ":memory:") -> DBManager:
    """创建 SQLite 数据库管理器，默认使用内存数据库"""
    return DBManager({"driver": "sqlite", "path": path})


def from_config(name: str = "default") -> DBManager:
    """按配置文件或环境变量中的命名连接创建数据库管理器

    Raises:
        ConnectionError: 配置中没有该名称的连接设置
    """
    settings = get_database_settings(name)
    if not settings:
        raise ConnectionError(f"配置中没有名为 {name} 的数据库连接")
    return DBManager(settings, name=name)

"""
命名连接注册表

同一进程内按名称共享数据库管理器实例，替代全局静态连接表。
"""

import threading
from typing import Any, Dict, List, Optional

from gridkit.common.config_manager import get_database_settings
from gridkit.common.db_manager import DBManager
from gridkit.common.exceptions import ConnectionError
from gridkit.common.logging_utils import get_logger

logger = get_logger("connection_registry")


class ConnectionRegistry:
    """命名连接注册表

    - get(name, settings): 首次获取某名称时必须提供连接设置（或在配置中存在同名连接），
      之后的调用返回同一实例，忽略新的设置
    - close(name): 关闭并移除连接，可重复调用
    """

    def __init__(self):
        self._instances: Dict[str, DBManager] = {}
        self._lock = threading.Lock()

    def get(self, name: str = "default", settings: Any = None) -> DBManager:
        """获取命名连接

        Raises:
            ConnectionError: 首次获取且既未提供设置、配置中也没有同名连接
        """
        with self._lock:
            manager = self._instances.get(name)
            if manager is not None:
                return manager

            if settings is None:
                settings = get_database_settings(name)
            if not settings:
                raise ConnectionError(f"首次获取连接 {name} 时必须提供连接设置")

            manager = DBManager(settings, name=name)
            self._instances[name] = manager
            logger.info(f"已注册数据库连接: {name} ({manager.driver})")
            return manager

    def close(self, name: str = "default") -> bool:
        """关闭并移除命名连接，不存在时返回 False"""
        with self._lock:
            manager = self._instances.pop(name, None)
        if manager is None:
            return False
        manager.close()
        logger.info(f"已关闭数据库连接: {name}")
        return True

    def close_all(self):
        with self._lock:
            names = list(self._instances)
        for name in names:
            self.close(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._instances)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._instances


# 进程级默认注册表
_default_registry = ConnectionRegistry()


def get_registry() -> ConnectionRegistry:
    return _default_registry


def get_named_instance(name: str = "default", settings: Optional[Any] = None) -> DBManager:
    """从默认注册表获取命名连接"""
    return _default_registry.get(name, settings)


def close_named_instance(name: str = "default") -> bool:
    """关闭默认注册表中的命名连接"""
    return _default_registry.close(name)

"""
通用组件模块
"""
from .logging_utils import get_logger, setup_logging
from .db_manager import DBManager, create_manager, create_sqlite_manager, from_config
from .connection_registry import ConnectionRegistry, close_named_instance, get_named_instance
from .config_manager import ConfigManager
from .constants import Drivers, FieldTypes

__all__ = [
    'get_logger',
    'setup_logging',
    'DBManager',
    'create_manager',
    'create_sqlite_manager',
    'from_config',
    'ConnectionRegistry',
    'get_named_instance',
    'close_named_instance',
    'ConfigManager',
    'Drivers',
    'FieldTypes',
]

"""
gridkit

基于声明式配置的数据表格引擎，以及其下的多驱动事务数据访问层。
"""
from .common import DBManager, get_logger, get_named_instance
from .grid import DataGrid, GridConfig, GridResult

__version__ = "0.1.0"

__all__ = [
    'DBManager',
    'get_logger',
    'get_named_instance',
    'DataGrid',
    'GridConfig',
    'GridResult',
]

"""
表格引擎模块

声明式表格配置 → 安全的参数化 SQL（列表、搜索、排序、分页、聚合）与写操作。
"""
from .actions import GridAction, parse_request
from .callbacks import CallbackRegistry, FileStorage
from .config import GridConfig
from .data_grid import DataGrid
from .dispatcher import ActionDispatcher
from .results import GridResult
from .schema import ColumnInfo, TableSchema

__all__ = [
    'GridAction',
    'parse_request',
    'CallbackRegistry',
    'FileStorage',
    'GridConfig',
    'DataGrid',
    'ActionDispatcher',
    'GridResult',
    'ColumnInfo',
    'TableSchema',
]

"""
gridkit 异常类定义

ConnectionError 与内置同名异常不同，表示数据库连接配置或建立失败；
导入时请使用完整路径以免混淆。
"""


class GridKitError(Exception):
    """gridkit 基础异常"""
    pass


class DatabaseError(GridKitError):
    """数据访问层基础异常"""
    pass


class ConnectionError(DatabaseError):  # noqa: A001
    """无法建立连接，或缺少驱动必需的连接设置"""
    pass


class ExecutionError(DatabaseError):
    """语句执行失败（包装底层驱动异常）"""
    pass


class UnsupportedOperationError(DatabaseError):
    """当前驱动不支持的操作，例如在 PostgreSQL 上使用 REPLACE"""
    pass


class ValidationError(GridKitError):
    """请求参数或字段值校验失败"""
    pass


class InvalidActionError(ValidationError):
    """未知的请求动作"""
    pass

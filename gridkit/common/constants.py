# gridkit/common/constants.py


class Drivers:
    """
    支持的数据库驱动名称。
    """
    MYSQL = "mysql"
    PGSQL = "pgsql"
    SQLITE = "sqlite"


class FieldTypes:
    """
    字段语义类型，由列定义推断或由列配置显式覆盖。
    """
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    BOOLEAN = "boolean"
    CHECKBOX = "checkbox"
    DATE = "date"
    DATETIME = "datetime-local"
    TIME = "time"
    SELECT = "select"
    SELECT2 = "select2"
    EMAIL = "email"
    IMAGE = "image"
    FILE = "file"

    # 日期类字段的精确输入格式
    DATE_FORMAT = "%Y-%m-%d"
    DATETIME_FORMAT = "%Y-%m-%dT%H:%M"


class Comparators:
    """
    结构化 WHERE 条件允许使用的比较符。
    """
    IN = "IN"
    NOT_IN = "NOT IN"
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"

    LIST_COMPARATORS = (IN, NOT_IN)
    ALLOWED = ("=", "!=", "<>", "<", ">", "<=", ">=", IN, NOT_IN, LIKE, NOT_LIKE)


class JoinTypes:
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL_OUTER = "FULL OUTER"

    ALLOWED = (INNER, LEFT, RIGHT, FULL_OUTER)


class Aggregations:
    """
    表尾聚合类型与范围。
    """
    SUM = "sum"
    AVG = "avg"
    BOTH = "both"

    SCOPE_PAGE = "page"
    SCOPE_ALL = "all"
    SCOPE_BOTH = "both"

    TYPES = (SUM, AVG, BOTH)
    SCOPES = (SCOPE_PAGE, SCOPE_ALL, SCOPE_BOTH)


class SortDirections:
    ASC = "ASC"
    DESC = "DESC"


# 计算列允许的运算符
CALCULATION_OPERATORS = ("+", "-", "*", "/", "%")

# 单页最大记录数，per_page=0 表示不分页
MAX_PER_PAGE = 1000

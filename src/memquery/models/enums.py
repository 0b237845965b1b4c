from enum import StrEnum


class HookEvent(StrEnum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"
    BEFORE_SELECT = "before_select"
    AFTER_WHERE = "after_where"
    AFTER_ORDER_BY = "after_order_by"
    AFTER_LIMIT = "after_limit"


class HookResult(StrEnum):
    CONTINUE = "continue"
    EXCLUDE = "exclude"


class PersistMethod(StrEnum):
    CREATE = "create"
    INSERT = "insert"
    UPDATE = "update"
    INSERT_OR_UPDATE = "insert_or_update"


class OrderDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class BooleanType(StrEnum):
    AND = "and"
    OR = "or"

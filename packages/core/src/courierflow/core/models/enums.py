"""枚举定义 -- 订单状态机、事件类型、操作者角色、通知类型

包含 OrderStatus 状态机、EventType、ActorRole、RecipientRole、
NotificationKind、ProofKind 枚举，以及 VALID_TRANSITIONS 合法流转映射和
TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class OrderStatus(StrEnum):
    """订单状态机"""

    # 活跃状态
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"

    # 终态
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# 合法状态流转：主链路 + 任意非终态可取消
VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.CREATED: {OrderStatus.ASSIGNED, OrderStatus.CANCELLED},
    OrderStatus.ASSIGNED: {OrderStatus.PICKED_UP, OrderStatus.CANCELLED},
    OrderStatus.PICKED_UP: {OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    # 终态不可再流转
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}

# 持有骑手的状态（rider_id 必须非空）
RIDER_HOLDING_STATES: set[OrderStatus] = {
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
}

# 派送前状态（尚未取货）
PRE_DISPATCH_STATES: set[OrderStatus] = {
    OrderStatus.CREATED,
    OrderStatus.ASSIGNED,
}


class EventType(StrEnum):
    """事件类型"""

    ORDER_CREATED = "ORDER_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    RIDER_ASSIGNED = "RIDER_ASSIGNED"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"


class ActorRole(StrEnum):
    """操作者角色"""

    AGENT = "agent"
    RIDER = "rider"
    SYSTEM = "system"


class RecipientRole(StrEnum):
    """通知接收方角色"""

    CUSTOMER = "customer"
    RIDER = "rider"


class NotificationKind(StrEnum):
    """通知类型"""

    ORDER_ASSIGNED = "order_assigned"
    ORDER_REASSIGNED = "order_reassigned"
    ORDER_CANCELLED = "order_cancelled"
    STATUS_UPDATE = "status_update"
    DELIVERY_CONFIRMED = "delivery_confirmed"


class ProofKind(StrEnum):
    """签收凭证类型"""

    SIGNATURE = "signature"
    PHOTO = "photo"
    CODE = "code"


def validate_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """验证状态流转是否在合法边集内（不考虑操作者角色）

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed

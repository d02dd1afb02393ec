"""courierflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    PRE_DISPATCH_STATES,
    RIDER_HOLDING_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorRole,
    EventType,
    NotificationKind,
    OrderStatus,
    ProofKind,
    RecipientRole,
    validate_transition,
)
from .event import Event
from .metrics import MetricsSnapshot
from .notification import NotificationIntent
from .order import CompletionProof, Order, StatusChange
from .payloads import (
    DeliveryConfirmedPayload,
    OrderCreatedPayload,
    RiderAssignedPayload,
    StatusChangedPayload,
)
from .rider import RiderAvailability

__all__ = [
    # 枚举
    "OrderStatus",
    "EventType",
    "ActorRole",
    "RecipientRole",
    "NotificationKind",
    "ProofKind",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "RIDER_HOLDING_STATES",
    "PRE_DISPATCH_STATES",
    "validate_transition",
    # Order
    "Order",
    "StatusChange",
    "CompletionProof",
    # Event
    "Event",
    # Rider
    "RiderAvailability",
    # Notification
    "NotificationIntent",
    # Metrics
    "MetricsSnapshot",
    # Payloads
    "OrderCreatedPayload",
    "StatusChangedPayload",
    "RiderAssignedPayload",
    "DeliveryConfirmedPayload",
]

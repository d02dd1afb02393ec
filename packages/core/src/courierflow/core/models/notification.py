"""NotificationIntent -- 待投递的通知意图

与具体通知渠道无关，由外部 transport 负责实际投递。
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import NotificationKind, RecipientRole


class NotificationIntent(BaseModel):
    """通知意图"""

    intent_id: str = Field(description="唯一标识，ULID 格式")
    event_id: str = Field(description="来源事件 ID（去重键）")
    recipient_role: RecipientRole
    recipient_id: str
    order_id: str
    kind: NotificationKind
    payload: dict[str, Any] = Field(default_factory=dict)

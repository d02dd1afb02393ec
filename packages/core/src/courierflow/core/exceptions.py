"""引擎异常体系

所有命令失败都以类型化异常返回给调用方，从不静默忽略。
recoverable 标记调用方是否可以通过重读状态 / 重试恢复。
"""


class EngineError(Exception):
    """引擎基础异常"""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或重读状态恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class InvalidTransitionError(EngineError):
    """请求的状态流转在当前状态下不合法

    调用方应重读订单状态后以合法流转重试。
    """

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, reason: str) -> None:
        super().__init__(
            f"Cannot transition from {current} to {requested}: {reason}",
            recoverable=True,
        )
        self.current = current
        self.requested = requested
        self.reason = reason


class RiderUnavailableError(EngineError):
    """骑手不在岗或已持有其它订单"""

    code = "RIDER_UNAVAILABLE"

    def __init__(self, rider_id: str, reason: str) -> None:
        super().__init__(f"Rider {rider_id} is unavailable: {reason}", recoverable=True)
        self.rider_id = rider_id
        self.reason = reason


class OrderNotAssignableError(EngineError):
    """订单当前不可指派（已指派 / 已取货 / 终态 / 改派前置条件不符）"""

    code = "ORDER_NOT_ASSIGNABLE"

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"Order {order_id} is not assignable: {reason}", recoverable=True)
        self.order_id = order_id
        self.reason = reason


class WriteFailedError(EngineError):
    """持久化层拒绝写入，事务已回滚

    调用方应重试整个命令，不得假设部分生效。
    """

    code = "WRITE_FAILED"

    def __init__(self, order_id: str, original_error: BaseException) -> None:
        super().__init__(
            f"Append for order {order_id} failed: {original_error}",
            recoverable=True,
        )
        self.order_id = order_id
        self.original_error = original_error


class EngineTimeoutError(EngineError):
    """在超时时间内未能获得互斥权"""

    code = "TIMEOUT"

    def __init__(self, key: str, timeout_s: float) -> None:
        super().__init__(f"Timed out after {timeout_s}s waiting for {key}", recoverable=True)
        self.key = key
        self.timeout_s = timeout_s


class NotFoundError(EngineError):
    """订单或骑手不存在，重试无法恢复"""

    code = "NOT_FOUND"

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key} does not exist", recoverable=False)
        self.kind = kind
        self.key = key


class RecipientOfflineError(EngineError):
    """通知通道上没有可达的接收方，通知保持 failed 等待补投"""

    code = "RECIPIENT_OFFLINE"

    def __init__(self, recipient_role: str, recipient_id: str) -> None:
        super().__init__(
            f"No live subscriber for {recipient_role} {recipient_id}",
            recoverable=True,
        )
        self.recipient_role = recipient_role
        self.recipient_id = recipient_id

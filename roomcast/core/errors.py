"""
roomcast.core.errors
~~~~~~~~~~~~~~~~~~~~

中转服务的领域异常。

这些异常都被约束在单个连接 / 单条消息的处理边界之内：
任何一个连接上的失败都不应影响其它连接或后续消息。
"""
from __future__ import annotations


class RelayError(Exception):
    """中转服务异常基类。

    Attributes:
        status_code: 映射到 HTTP 层时使用的状态码。
        detail: 人类可读的错误描述。
    """

    status_code: int = 500
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class JoinRejected(RelayError):
    """连接未能加入房间 / 注册端点，连接随后会被关闭。"""

    status_code = 400
    default_detail = "Join rejected"


class MissingIdentifier(JoinRejected):
    """建立连接时没有提供 room_id / user_id。"""

    default_detail = "Missing identifier"


class MalformedMessage(RelayError):
    """定向消息无法解析为 ``{"to": ..., "message": ...}`` 信封。"""

    status_code = 422
    default_detail = "Invalid message format"


class RecipientUnavailable(RelayError):
    """定向投递的目标不存在或已断开。"""

    status_code = 404
    default_detail = "Recipient is not online"


class DeliveryFailure(RelayError):
    """向单个连接发送消息时传输层抛出异常。"""

    status_code = 502
    default_detail = "Delivery failed"


class ChannelNotFound(RelayError):
    """查询的房间不存在。"""

    status_code = 404
    default_detail = "Room not found"


class TelephonyNotConfigured(RelayError):
    """Twilio 凭据或主叫号码未配置。"""

    status_code = 503
    default_detail = "Telephony is not configured"

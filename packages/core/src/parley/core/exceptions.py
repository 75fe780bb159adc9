"""Parley 异常体系

所有业务异常继承 ChatError，携带对外错误码与 HTTP 状态码。
TransientRaceError 仅在内部流转，由 StatusSynchronizer 吸收并记录日志。
"""


class ChatError(Exception):
    """Parley 基础异常"""

    code: str = "CHAT_ERROR"
    status_code: int = 500

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class Unauthenticated(ChatError):
    """缺少有效会话（对外映射为 401 / WebSocket 4401 关闭）"""

    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "authentication required") -> None:
        super().__init__(message)


class ValidationError(ChatError):
    """请求内容不合法，例如正文与媒体同时为空"""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ForbiddenError(ChatError):
    """身份合法但无权操作目标资源（例如加入他人房间）"""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ChatError):
    """引用了不存在的用户或消息"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class PersistenceError(ChatError):
    """存储不可用，客户端不应假定消息已送达"""

    code = "PERSISTENCE_ERROR"
    status_code = 503

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Args:
            message: 错误描述
            original_error: 底层驱动异常
        """
        super().__init__(message, recoverable=True)
        self.original_error = original_error


class TransientRaceError(ChatError):
    """状态回执竞争（重复回执、过期回执、未知消息）

    只在 StatusSynchronizer 内部抛出并吸收，永不暴露给客户端。
    """

    code = "TRANSIENT_RACE"
    status_code = 409

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message, recoverable=True)
        self.reason = reason

"""
@description 业务错误定义
@responsibility 定义核心层对外暴露的错误种类及其 HTTP 状态码映射
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    GONE = "GONE"
    EXPIRED = "EXPIRED"
    VIEWS_EXHAUSTED = "VIEWS_EXHAUSTED"
    OWNER_MISMATCH = "OWNER_MISMATCH"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    WRONG_TYPE = "WRONG_TYPE"
    STORE_FAILED = "STORE_FAILED"
    KEYGEN_FAILED = "KEYGEN_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class WinkrError(Exception):
    """核心层错误基类"""

    kind: ErrorKind = ErrorKind.STORE_FAILED
    status_code: int = 500
    default_message: str = "服务内部错误"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, message={self.message!r})"


class NotFoundError(WinkrError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "资源不存在"


class GoneError(WinkrError):
    kind = ErrorKind.GONE
    status_code = 410
    default_message = "照片已被删除"


class ExpiredError(WinkrError):
    kind = ErrorKind.EXPIRED
    status_code = 410
    default_message = "照片已过期"


class ViewsExhaustedError(WinkrError):
    kind = ErrorKind.VIEWS_EXHAUSTED
    status_code = 410
    default_message = "照片查看次数已用完"


class OwnerMismatchError(WinkrError):
    kind = ErrorKind.OWNER_MISMATCH
    status_code = 403
    default_message = "用户不是该照片的所有者"


class UserNotFoundError(WinkrError):
    kind = ErrorKind.USER_NOT_FOUND
    status_code = 404
    default_message = "用户不存在"


class WrongTypeError(WinkrError):
    kind = ErrorKind.WRONG_TYPE
    status_code = 400
    default_message = "消息不是阅后即焚照片消息"


class StoreFailedError(WinkrError):
    kind = ErrorKind.STORE_FAILED
    status_code = 500
    default_message = "存储操作失败"


class KeygenFailedError(WinkrError):
    kind = ErrorKind.KEYGEN_FAILED
    status_code = 500
    default_message = "生成访问密钥失败"


class OperationTimeoutError(WinkrError):
    kind = ErrorKind.TIMEOUT
    status_code = 504
    default_message = "操作超时"


class OperationCancelledError(WinkrError):
    kind = ErrorKind.CANCELLED
    status_code = 499
    default_message = "操作已取消"

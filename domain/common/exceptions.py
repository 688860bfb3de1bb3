"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class MissingFieldException(BusinessException):
    """Inbound realtime message lacks a field its type requires."""

    def __init__(self, field: str, message_type: Optional[str] = None):
        details = {"message_type": message_type} if message_type else None
        super().__init__(
            code=BusinessCode.PARAM_MISSING,
            message=f"{field} is required",
            error_type="MissingField",
            details=details,
            field=field,
        )


class UnknownEventTypeException(BusinessException):
    def __init__(self, event_type: Optional[str]):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message="Unknown event type",
            error_type="UnknownEventType",
            details={"type": event_type},
            field="type",
        )

"""
Доменные исключения chatsync.

Выбрасываются сервисами и превращаются в HTTP-ответы обработчиком,
зарегистрированным в ``chatsync.main``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Базовое исключение для ошибок предметной области"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Запрошенный объект не найден"""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenException(DomainException):
    """Нет прав на действие с объектом"""

    status_code = status.HTTP_403_FORBIDDEN

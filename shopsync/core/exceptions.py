from typing import Optional


class SyncError(Exception):
    """Базовое исключение движка синхронизации"""
    pass


class NotAuthenticated(SyncError):
    """Нет контекста арендатора или сессии"""

    def __init__(self, message: str = "No tenant/session context available"):
        super().__init__(message)


class ConflictError(SyncError):
    """Запись нарушает контракт данных (например, нет ключа для upsert)"""

    def __init__(self, details: str):
        self.details = details
        super().__init__(f"Sync conflict: {details}")


class MissingIdentifier(ConflictError):
    """У записи отсутствует local_id"""
    pass


class RecordNotFound(SyncError):
    """Локальная запись не найдена"""
    pass


class NetworkError(SyncError):
    """Транспортная ошибка (таймаут, обрыв соединения)"""
    retryable = True


class ApiError(SyncError):
    """Удалённая сторона отклонила запрос"""

    def __init__(self, message: str, status_code: int, response: Optional[dict] = None):
        self.status_code = status_code
        self.response = response
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        # 4xx - ошибка данных, повтор не поможет
        return self.status_code >= 500 or self.status_code == 429


class AuthError(ApiError):
    """401/403 от удалённой стороны"""
    pass


class InvalidSignature(SyncError):
    """Подпись вебхука не совпала"""
    pass


class InvalidPayload(SyncError):
    """Тело вебхука не удалось разобрать"""
    pass


class SyncInProgress(SyncError):
    """Цикл синхронизации уже выполняется"""
    pass

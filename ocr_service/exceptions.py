"""
Ошибки OCR Service.

Каждый класс знает свой HTTP статус — обработчики в main.py
превращают их в ответ вида {"success": false, "error": {"message": ...}}.

Иерархия:
    OCRServiceError
        InvalidInputError      — 400, некорректное тело / поля запроса
        InvalidImageError      — 400, payload не декодируется в изображение
        EngineFailureError     — 500, ошибка движка распознавания
            EngineOverloadedError  — 503, очередь сессий переполнена
            EngineUnavailableError — 503, сервис останавливается
            EngineTimeoutError     — 504, распознавание не уложилось в лимит
            EngineInitError        — фатальная ошибка запуска Tesseract
"""


class OCRServiceError(Exception):
    """Базовая ошибка сервиса."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(OCRServiceError):
    status_code = 400


class InvalidImageError(OCRServiceError):
    status_code = 400


class EngineFailureError(OCRServiceError):
    status_code = 500


class EngineOverloadedError(EngineFailureError):
    status_code = 503


class EngineUnavailableError(EngineFailureError):
    status_code = 503


class EngineTimeoutError(EngineFailureError):
    status_code = 504


class EngineInitError(EngineFailureError):
    """Tesseract не найден или не установлен нужный язык."""

"""
Конфигурация OCR Service.

Все значения читаются из .env файла (или переменных окружения)
с префиксом OCR_. Для всех параметров заданы дефолты, .env нужен
только для переопределения.

Документация по параметрам: .env.example
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR Service.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 3000

    # --- API: лимиты ---
    # Максимальный размер JSON тела запроса
    max_body_size_mb: int = 10

    # --- OCR: Tesseract ---
    ocr_lang: str = "eng"
    ocr_oem: int = 3
    ocr_psm: int = 3

    # --- Пул сессий распознавания ---
    # Количество независимых сессий Tesseract
    sessions: int = 1
    # Сколько запросов может ждать свободную сессию, остальные получают 503
    max_queue_depth: int = 16

    # --- Таймауты ---
    # Лимит на один вызов Tesseract (процесс убивается по истечении)
    recognize_timeout_seconds: float = 60.0
    # Лимит на ожидание в очереди + распознавание
    request_timeout_seconds: float = 120.0
    # Лимит на проверку изображения через Pillow
    validate_timeout_seconds: float = 10.0


# Глобальный экземпляр настроек
settings = Settings()

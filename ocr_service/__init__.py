"""
OCR Service — распознавание текста из base64 изображений.

Одно FastAPI приложение:
    - приём изображения в формате data URI
    - проверка изображения через Pillow
    - распознавание через пул сессий Tesseract
    - ответ текстом или bounding box'ами (word, line, paragraph, block, page)
"""

from ocr_service.config import settings
from ocr_service.schemas import BoundingBox, Granularity, RecognitionResult

__all__ = [
    "settings",
    "BoundingBox",
    "Granularity",
    "RecognitionResult",
]

"""
Сервисы OCR обработки.

Модули:
    - decoder: data URI -> bytes
    - image_validator: проверка изображения через Pillow
    - ocr_processor: движок Tesseract и построение иерархии результата
    - session_manager: пул сессий распознавания
    - projector: результат -> текст / bounding box'ы
"""

from ocr_service.services.decoder import decode_base64_image
from ocr_service.services.image_validator import validate_image_bytes
from ocr_service.services.ocr_processor import TesseractEngine
from ocr_service.services.projector import project_boxes, project_text
from ocr_service.services.session_manager import RecognitionSessionManager, SessionState

__all__ = [
    "decode_base64_image",
    "validate_image_bytes",
    "TesseractEngine",
    "RecognitionSessionManager",
    "SessionState",
    "project_text",
    "project_boxes",
]

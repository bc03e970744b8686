"""
Проверка, что байты являются корректным растровым изображением.

Pillow полностью декодирует изображение (open + load), формат не важен —
PNG, JPEG, TIFF, BMP и т.д. Декодирование выполняется в threadpool,
чтобы не блокировать event loop.
"""

import asyncio
import io
import logging

from PIL import Image
from starlette.concurrency import run_in_threadpool

from ocr_service.config import settings

logger = logging.getLogger(__name__)


def _decode_image(image_bytes: bytes) -> tuple[str, tuple[int, int]]:
    """
    Полностью декодирует изображение.

    Pillow сам защищается от decompression bomb (DecompressionBombError
    при превышении Image.MAX_IMAGE_PIXELS).

    Returns:
        tuple: (формат, (ширина, высота))
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        img.load()
        return img.format or "unknown", img.size


async def validate_image_bytes(image_bytes: bytes) -> bool:
    """
    Проверяет, что байты декодируются в изображение.

    Никогда не бросает исключений: причина ошибки пишется в лог,
    вызывающий получает False.

    Args:
        image_bytes: декодированные байты из data URI

    Returns:
        bool: True если изображение полностью декодируется
    """
    if not image_bytes:
        return False

    try:
        image_format, (width, height) = await asyncio.wait_for(
            run_in_threadpool(_decode_image, image_bytes),
            timeout=settings.validate_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"Проверка изображения не уложилась в {settings.validate_timeout_seconds}s"
        )
        return False
    except Exception as e:
        logger.warning(f"Pillow не смог декодировать изображение: {e}")
        return False

    logger.debug(f"Изображение валидно: {image_format} {width}x{height}")
    return True

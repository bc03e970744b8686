"""
Декодер base64 изображения из data URI.

Формат входа: data:<media-type>;base64,<data>
Media type проверяется только по форме (буквы, цифры, '-', '+', '/').
"""

import base64
import binascii
import re
from typing import Optional

DATA_URI_PATTERN = re.compile(r"data:([A-Za-z0-9+/-]+);base64,(.+)", re.DOTALL)


def decode_base64_image(payload: str) -> Optional[bytes]:
    """
    Декодирует data URI в байты.

    Никогда не бросает исключений: любая ошибка формата или base64
    даёт None.

    Args:
        payload: строка data:<media-type>;base64,<data>

    Returns:
        bytes: декодированное содержимое или None
    """
    if not isinstance(payload, str):
        return None

    match = DATA_URI_PATTERN.fullmatch(payload)
    if match is None:
        return None

    try:
        decoded = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        return None

    return decoded or None

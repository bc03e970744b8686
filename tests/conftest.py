"""
Общие фикстуры тестов OCR Service.

FakeEngine заменяет Tesseract: тесты пайплайна и пула сессий
не требуют установленного бинарника.
"""

import base64
import io
import threading
import time
from typing import Optional

import pytest
from PIL import Image

from ocr_service.schemas import RecognitionResult
from ocr_service.services.ocr_processor import build_recognition_result


# Вывод pytesseract.image_to_data(..., output_type=Output.DICT):
# страница, два блока, в первом строка "HELLO WORLD", во втором "again"
TESSERACT_DATA = {
    "level":     [1,   2,   3,   4,   5,       5,       2,   3,   4,   5,       5],
    "page_num":  [1,   1,   1,   1,   1,       1,       1,   1,   1,   1,       1],
    "block_num": [0,   1,   1,   1,   1,       1,       2,   2,   2,   2,       2],
    "par_num":   [0,   0,   1,   1,   1,       1,       0,   1,   1,   1,       1],
    "line_num":  [0,   0,   0,   1,   1,       1,       0,   0,   1,   1,       1],
    "word_num":  [0,   0,   0,   0,   1,       2,       0,   0,   0,   1,       2],
    "left":      [0,   10,  10,  10,  10,      100,     10,  10,  10,  10,      0],
    "top":       [0,   10,  10,  10,  10,      10,      60,  60,  60,  60,      0],
    "width":     [200, 180, 180, 180, 80,      90,      100, 100, 100, 100,     0],
    "height":    [100, 30,  30,  30,  30,      30,      20,  20,  20,  20,      0],
    "conf":      [-1,  -1,  -1,  -1,  96.5,    91.0,    -1,  -1,  -1,  88.5,    "-1"],
    "text":      ["",  "",  "",  "",  "HELLO", "WORLD", "",  "",  "",  "again", " "],
}


def make_png(width: int = 1, height: int = 1, color=(255, 255, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_uri(data: bytes, media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


class FakeEngine:
    """
    Движок-заглушка с тем же интерфейсом, что и TesseractEngine.

    Если передан gate (threading.Event), каждый вызов recognize
    ждёт его — так тесты держат сессию занятой.
    """

    def __init__(
        self,
        result: Optional[RecognitionResult] = None,
        gate: Optional[threading.Event] = None,
        delay: float = 0.0,
        fail_start: Optional[Exception] = None,
        fail_recognize: Optional[Exception] = None,
    ):
        self.result = result
        self.gate = gate
        self.delay = delay
        self.fail_start = fail_start
        self.fail_recognize = fail_recognize
        self.calls: list[bytes] = []
        self.active = 0
        self.max_active = 0
        self.close_calls = 0
        self.closed = False
        self._counter_lock = threading.Lock()

    def start(self) -> str:
        if self.fail_start is not None:
            raise self.fail_start
        return "5.3.0"

    def recognize(self, image_bytes: bytes) -> RecognitionResult:
        with self._counter_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(image_bytes)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            if self.fail_recognize is not None:
                raise self.fail_recognize
            if self.result is not None:
                return self.result
            return RecognitionResult(text=image_bytes.decode("utf-8", "replace"))
        finally:
            with self._counter_lock:
                self.active -= 1

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def tesseract_data() -> dict:
    return {key: list(values) for key, values in TESSERACT_DATA.items()}


@pytest.fixture
def recognition_result(tesseract_data) -> RecognitionResult:
    return build_recognition_result(tesseract_data)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()

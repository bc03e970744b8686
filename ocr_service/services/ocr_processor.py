"""
Процессор OCR — обёртка над Tesseract.

Содержит:
    - TesseractEngine: проверка движка при старте и распознавание
      одного изображения
    - Построение иерархии page -> block -> paragraph -> line -> word
      из плоской таблицы image_to_data
    - Сборку текста из иерархии

ОПТИМИЗИРОВАНО: один вызов image_to_data даёт и текст, и координаты
всех уровней, второй проход Tesseract (image_to_string) не нужен.

Сам по себе класс не потокобезопасен в смысле порядка вызовов:
сериализацией занимается session_manager.
"""

import io
import logging
from typing import Optional

import pytesseract
from PIL import Image

from ocr_service.exceptions import EngineFailureError, EngineInitError, EngineTimeoutError
from ocr_service.schemas import (
    BlockNode,
    LineNode,
    PageNode,
    ParagraphNode,
    RecognitionResult,
    Region,
    WordNode,
)

logger = logging.getLogger(__name__)

# Значения колонки level в выводе Tesseract
LEVEL_PAGE = 1
LEVEL_BLOCK = 2
LEVEL_PARAGRAPH = 3
LEVEL_LINE = 4
LEVEL_WORD = 5


class TesseractEngine:
    """
    Один экземпляр движка Tesseract.

    Args:
        lang: языки в формате Tesseract (например "eng" или "rus+eng")
        oem: OCR Engine Mode
        psm: Page Segmentation Mode
        timeout: лимит на один вызов в секундах (0 — без лимита)
    """

    def __init__(
        self,
        lang: str = "eng",
        oem: int = 3,
        psm: int = 3,
        timeout: float = 0,
    ):
        self.lang = lang
        self.config = f"--oem {oem} --psm {psm}"
        self.timeout = timeout
        self.version: Optional[str] = None
        self.closed = False

    def start(self) -> str:
        """
        Проверяет, что Tesseract установлен и язык доступен.

        Returns:
            str: версия Tesseract

        Raises:
            EngineInitError: бинарник не найден или нет нужного языка
        """
        try:
            version = str(pytesseract.get_tesseract_version())
            installed = set(pytesseract.get_languages(config=""))
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as e:
            raise EngineInitError(f"Tesseract недоступен: {e}") from e

        missing = [lang for lang in self.lang.split("+") if lang not in installed]
        if missing:
            raise EngineInitError(
                f"Языки не установлены в Tesseract: {', '.join(missing)}"
            )

        self.version = version
        return version

    def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """
        Распознаёт изображение.

        Args:
            image_bytes: провалидированные байты изображения

        Returns:
            RecognitionResult: текст и иерархия с координатами

        Raises:
            EngineTimeoutError: процесс Tesseract превысил timeout
            EngineFailureError: Tesseract вернул ошибку
        """
        if self.closed:
            raise EngineFailureError("Сессия Tesseract уже закрыта")

        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                image.load()
                data = pytesseract.image_to_data(
                    image,
                    lang=self.lang,
                    config=self.config,
                    output_type=pytesseract.Output.DICT,
                    timeout=self.timeout,
                )
        except pytesseract.TesseractError as e:
            raise EngineFailureError(f"Tesseract error: {e.message}") from e
        except RuntimeError as e:
            # pytesseract бросает RuntimeError("Tesseract process timeout"),
            # процесс к этому моменту уже убит
            if "timeout" in str(e).lower():
                raise EngineTimeoutError(
                    f"Recognition did not finish within {self.timeout} seconds."
                ) from e
            raise EngineFailureError(str(e)) from e
        except OSError as e:
            raise EngineFailureError(f"Не удалось открыть изображение: {e}") from e

        return build_recognition_result(data)

    def close(self) -> None:
        self.closed = True


def build_recognition_result(data: dict) -> RecognitionResult:
    """
    Строит иерархию из словаря image_to_data.

    Tesseract выдаёт строки в порядке обхода: сначала страница,
    затем её блок, параграф, строка и слова этой строки и т.д.
    Каждая строка таблицы прикрепляется к последнему узлу уровнем выше.
    Области берутся как есть, без пересчёта.

    Args:
        data: словарь от pytesseract.image_to_data()

    Returns:
        RecognitionResult: страницы с вложенной иерархией и собранный текст
    """
    pages: list[PageNode] = []
    block: Optional[BlockNode] = None
    paragraph: Optional[ParagraphNode] = None
    line: Optional[LineNode] = None
    confidences: list[float] = []

    for i in range(len(data["level"])):
        level = int(data["level"][i])
        region = Region.from_ltwh(
            data["left"][i], data["top"][i], data["width"][i], data["height"][i]
        )

        if level == LEVEL_PAGE:
            pages.append(PageNode(region=region))
            block = paragraph = line = None
        elif level == LEVEL_BLOCK and pages:
            block = BlockNode(region=region)
            pages[-1].blocks.append(block)
            paragraph = line = None
        elif level == LEVEL_PARAGRAPH and block is not None:
            paragraph = ParagraphNode(region=region)
            block.paragraphs.append(paragraph)
            line = None
        elif level == LEVEL_LINE and paragraph is not None:
            line = LineNode(region=region)
            paragraph.lines.append(line)
        elif level == LEVEL_WORD and line is not None:
            text = str(data["text"][i]).strip()
            if not text:  # Пропускаем пустые записи
                continue
            conf = _parse_conf(data["conf"][i])
            line.words.append(WordNode(text=text, region=region, confidence=conf))
            if conf >= 0:
                confidences.append(conf)

    avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

    return RecognitionResult(
        text=assemble_text(pages),
        pages=pages,
        confidence=avg_confidence,
    )


def assemble_text(pages: list[PageNode]) -> str:
    """
    Собирает текст из иерархии.

    Алгоритм:
        - Слова на одной строке соединяются пробелами
        - Строки и параграфы внутри блока — новая строка (\\n)
        - Разные блоки — пустая строка между ними (\\n\\n)

    Текст не побайтно совпадает с выводом image_to_string: там
    параграфы внутри блока тоже разделены пустой строкой.

    Args:
        pages: страницы результата

    Returns:
        str: текст с сохранённой структурой
    """
    result_blocks = []

    for page in pages:
        for block in page.blocks:
            block_lines = [
                " ".join(word.text for word in line.words)
                for par in block.paragraphs
                for line in par.lines
                if line.words
            ]
            if block_lines:
                result_blocks.append("\n".join(block_lines))

    return "\n\n".join(result_blocks)


def _parse_conf(value) -> float:
    """conf бывает int, float или строкой ('-1', '96.5') в зависимости от версии."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0

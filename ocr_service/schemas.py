"""
Схемы данных OCR Service.

Включает:
    - Pydantic модели для API (запросы, ответы, bounding box)
    - Внутренние dataclass'ы с иерархией результата распознавания
      (страница -> блоки -> параграфы -> строки -> слова)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Granularity(str, Enum):
    """Уровень иерархии, на котором запрашиваются bounding box'ы."""

    WORD = "word"
    LINE = "line"
    PARAGRAPH = "paragraph"
    BLOCK = "block"
    PAGE = "page"


# =============================================================================
# Pydantic модели для API
# =============================================================================


class GetTextRequest(BaseModel):
    """
    Тело запроса POST /api/get-text.

    Поле необязательное на уровне схемы: отсутствие проверяется
    в обработчике, чтобы вернуть 400 с нашим форматом ошибки.

    Attributes:
        base64_image: изображение в формате data:<mime>;base64,<data>
    """

    base64_image: Optional[str] = None


class GetBBoxesRequest(BaseModel):
    """
    Тело запроса POST /api/get-bboxes.

    Attributes:
        base64_image: изображение в формате data:<mime>;base64,<data>
        bbox_type: уровень иерархии (word, line, paragraph, block, page)
    """

    base64_image: Optional[str] = None
    bbox_type: Optional[str] = None


class BoundingBox(BaseModel):
    """
    Прямоугольник в пиксельных координатах изображения.

    Инвариант: x_min <= x_max и y_min <= y_max.
    """

    x_min: int
    y_min: int
    x_max: int
    y_max: int


class TextResult(BaseModel):
    text: str


class BBoxesResult(BaseModel):
    bboxes: list[BoundingBox] = Field(default_factory=list)


class TextResponse(BaseModel):
    success: bool = True
    result: TextResult


class BBoxesResponse(BaseModel):
    success: bool = True
    result: BBoxesResult


class ErrorDetail(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """
    Ответ при ошибке.

    Attributes:
        success: всегда False
        error: сообщение об ошибке
    """

    success: bool = False
    error: ErrorDetail


# =============================================================================
# Иерархия результата распознавания
# =============================================================================


@dataclass
class Region:
    """
    Прямоугольная область элемента (min/max координаты в пикселях).

    Attributes:
        x_min: левый край
        y_min: верхний край
        x_max: правый край (left + width)
        y_max: нижний край (top + height)
    """

    x_min: int
    y_min: int
    x_max: int
    y_max: int

    @classmethod
    def from_ltwh(cls, left: int, top: int, width: int, height: int) -> "Region":
        """Строит область из формата Tesseract (left, top, width, height)."""
        return cls(
            x_min=int(left),
            y_min=int(top),
            x_max=int(left) + int(width),
            y_max=int(top) + int(height),
        )


@dataclass
class WordNode:
    """
    Слово — лист иерархии.

    Attributes:
        text: распознанный текст слова
        region: область слова
        confidence: уверенность распознавания (0-100)
    """

    text: str
    region: Region
    confidence: float = 0.0


@dataclass
class LineNode:
    region: Region
    words: list[WordNode] = field(default_factory=list)


@dataclass
class ParagraphNode:
    region: Region
    lines: list[LineNode] = field(default_factory=list)


@dataclass
class BlockNode:
    region: Region
    paragraphs: list[ParagraphNode] = field(default_factory=list)


@dataclass
class PageNode:
    region: Region
    blocks: list[BlockNode] = field(default_factory=list)


@dataclass
class RecognitionResult:
    """
    Результат одного вызова движка.

    Живёт в рамках одного запроса, нигде не сохраняется.

    Attributes:
        text: полный текст изображения в том виде, в котором его собрал движок
        pages: страницы в порядке обхода движка
        confidence: средняя уверенность по словам
    """

    text: str
    pages: list[PageNode] = field(default_factory=list)
    confidence: float = 0.0

    def word_count(self) -> int:
        return sum(
            len(line.words)
            for page in self.pages
            for block in page.blocks
            for par in block.paragraphs
            for line in par.lines
        )


def error_payload(message: str) -> dict[str, Any]:
    """Тело ответа с ошибкой в едином формате."""
    return ErrorResponse(error=ErrorDetail(message=message)).model_dump()

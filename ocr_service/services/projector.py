"""
Проекция результата распознавания в формат ответа API.

Две операции над одним и тем же RecognitionResult:
    - project_text: полный текст изображения
    - project_boxes: bounding box'ы одного уровня иерархии

Порядок элементов — порядок обхода движка (сверху вниз, слева направо),
координаты не пересчитываются, не обрезаются и не сортируются.
"""

from typing import Iterator

from ocr_service.schemas import (
    BoundingBox,
    Granularity,
    RecognitionResult,
    Region,
)


def project_text(result: RecognitionResult) -> str:
    """Текст в том виде, в котором его собрал движок."""
    return result.text


def project_boxes(
    result: RecognitionResult,
    granularity: Granularity,
) -> list[BoundingBox]:
    """
    Возвращает по одному bounding box на каждый узел выбранного уровня.

    Args:
        result: результат движка
        granularity: уже провалидированный уровень иерархии

    Returns:
        list[BoundingBox]: прямоугольники в порядке обхода движка
    """
    return [_to_bbox(region) for region in _iter_regions(result, Granularity(granularity))]


def _iter_regions(result: RecognitionResult, granularity: Granularity) -> Iterator[Region]:
    for page in result.pages:
        if granularity == Granularity.PAGE:
            yield page.region
            continue
        for block in page.blocks:
            if granularity == Granularity.BLOCK:
                yield block.region
                continue
            for par in block.paragraphs:
                if granularity == Granularity.PARAGRAPH:
                    yield par.region
                    continue
                for line in par.lines:
                    if granularity == Granularity.LINE:
                        yield line.region
                        continue
                    for word in line.words:
                        yield word.region


def _to_bbox(region: Region) -> BoundingBox:
    return BoundingBox(
        x_min=region.x_min,
        y_min=region.y_min,
        x_max=region.x_max,
        y_max=region.y_max,
    )

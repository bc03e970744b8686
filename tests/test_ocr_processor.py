"""
Тесты обёртки Tesseract: иерархия из image_to_data, сборка текста,
проверка движка при старте. pytesseract подменяется через monkeypatch.
"""

import pytesseract
import pytest

from ocr_service.exceptions import EngineFailureError, EngineInitError, EngineTimeoutError
from ocr_service.schemas import BlockNode, LineNode, PageNode, ParagraphNode, Region, WordNode
from ocr_service.services.ocr_processor import (
    TesseractEngine,
    assemble_text,
    build_recognition_result,
)


def test_build_result_follows_tesseract_hierarchy(tesseract_data):
    result = build_recognition_result(tesseract_data)

    assert len(result.pages) == 1
    page = result.pages[0]
    assert page.region == Region(0, 0, 200, 100)
    assert len(page.blocks) == 2

    first_line = page.blocks[0].paragraphs[0].lines[0]
    assert [w.text for w in first_line.words] == ["HELLO", "WORLD"]
    assert first_line.words[0].region == Region(10, 10, 90, 40)
    assert first_line.words[1].confidence == pytest.approx(91.0)


def test_build_result_skips_empty_words(tesseract_data):
    result = build_recognition_result(tesseract_data)

    last_line = result.pages[0].blocks[1].paragraphs[0].lines[0]
    assert [w.text for w in last_line.words] == ["again"]
    assert result.word_count() == 3


def test_text_is_assembled_by_lines_and_blocks(tesseract_data):
    result = build_recognition_result(tesseract_data)

    assert result.text == "HELLO WORLD\n\nagain"
    assert result.confidence == pytest.approx((96.5 + 91.0 + 88.5) / 3)


def test_paragraphs_in_one_block_are_joined_by_single_newline():
    def word(text):
        return WordNode(text=text, region=Region(0, 0, 1, 1), confidence=90.0)

    block = BlockNode(
        region=Region(0, 0, 10, 10),
        paragraphs=[
            ParagraphNode(
                region=Region(0, 0, 10, 5),
                lines=[LineNode(region=Region(0, 0, 10, 5), words=[word("first")])],
            ),
            ParagraphNode(
                region=Region(0, 5, 10, 10),
                lines=[LineNode(region=Region(0, 5, 10, 10), words=[word("second")])],
            ),
        ],
    )

    assert assemble_text([PageNode(region=Region(0, 0, 10, 10), blocks=[block])]) == "first\nsecond"


def test_empty_data_gives_empty_result():
    keys = ["level", "left", "top", "width", "height", "conf", "text"]

    result = build_recognition_result({key: [] for key in keys})

    assert result.pages == []
    assert result.text == ""
    assert assemble_text([]) == ""


def test_engine_recognize_uses_single_image_to_data_call(monkeypatch, png_bytes, tesseract_data):
    calls = []

    def fake_image_to_data(image, lang, config, output_type, timeout):
        calls.append((image.size, lang, config, output_type, timeout))
        return tesseract_data

    monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

    engine = TesseractEngine(lang="eng", oem=1, psm=6, timeout=30)
    result = engine.recognize(png_bytes)

    assert len(calls) == 1
    size, lang, config, output_type, timeout = calls[0]
    assert size == (1, 1)
    assert lang == "eng"
    assert config == "--oem 1 --psm 6"
    assert output_type == pytesseract.Output.DICT
    assert timeout == 30
    assert result.text == "HELLO WORLD\n\nagain"


def test_engine_wraps_tesseract_errors(monkeypatch, png_bytes):
    def fake_image_to_data(*args, **kwargs):
        raise pytesseract.TesseractError(1, "Image too small to scale!!")

    monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

    with pytest.raises(EngineFailureError, match="Image too small"):
        TesseractEngine().recognize(png_bytes)


def test_engine_wraps_process_timeout(monkeypatch, png_bytes):
    def fake_image_to_data(*args, **kwargs):
        raise RuntimeError("Tesseract process timeout")

    monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

    with pytest.raises(EngineTimeoutError, match="within 1 seconds"):
        TesseractEngine(timeout=1).recognize(png_bytes)


def test_engine_other_runtime_errors_stay_engine_failures(monkeypatch, png_bytes):
    def fake_image_to_data(*args, **kwargs):
        raise RuntimeError("unexpected tesseract output")

    monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

    with pytest.raises(EngineFailureError) as excinfo:
        TesseractEngine().recognize(png_bytes)

    assert not isinstance(excinfo.value, EngineTimeoutError)
    assert excinfo.value.status_code == 500


def test_closed_engine_refuses_work(png_bytes):
    engine = TesseractEngine()
    engine.close()

    with pytest.raises(EngineFailureError):
        engine.recognize(png_bytes)


def test_engine_start_checks_languages(monkeypatch):
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng", "osd"])

    assert TesseractEngine(lang="eng").start() == "5.3.0"

    with pytest.raises(EngineInitError, match="rus"):
        TesseractEngine(lang="rus+eng").start()


def test_engine_start_without_tesseract(monkeypatch):
    def not_found():
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", not_found)

    with pytest.raises(EngineInitError):
        TesseractEngine().start()

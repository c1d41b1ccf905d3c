import pandas as pd
import pytesseract
import pytest

from snaptrans.errors import OCREngineError
from snaptrans.image.synthetic import render_text_image
from snaptrans.ocr.engine import TesseractEngine, assemble_text, build_dataframe_from_tesseract, mean_confidence


def _tesseract_dict(**overrides):
    data = {
        'level': [5, 5, 5, 5, 5],
        'block_num': [1, 1, 1, 1, 2],
        'par_num': [1, 1, 1, 1, 1],
        'line_num': [1, 1, 2, 2, 1],
        'word_num': [2, 1, 1, 2, 1],
        'left': [60, 10, 10, 50, 10],
        'conf': ['90', '80', '70', '-1', '60'],
        'text': ['world', 'Hello', 'again', 'noise', 'Next'],
    }
    data.update(overrides)
    return data


def test_build_dataframe_from_tesseract_filters_empty_and_low_conf():
    data = {
        'level': [5, 5, 5],
        'block_num': [1, 1, 1],
        'par_num': [1, 1, 1],
        'line_num': [1, 1, 1],
        'word_num': [1, 2, 3],
        'conf': ['0', '85', '95'],
        'text': [' ', 'Hello', ''],
    }
    df = build_dataframe_from_tesseract(data)
    # Only one valid row should remain ('Hello')
    assert len(df) == 1
    assert df.iloc[0]['text'] == 'Hello'


def test_assemble_text_orders_words_lines_and_paragraphs():
    df = build_dataframe_from_tesseract(_tesseract_dict())
    assert assemble_text(df) == "Hello world\nagain\n\nNext"


def test_assemble_text_without_layout_columns():
    df = pd.DataFrame({'text': ['a', 'b'], 'conf': [90, 90]})
    assert assemble_text(df) == "a b"
    assert assemble_text(pd.DataFrame()) == ""


def test_mean_confidence_scales_to_unit_interval():
    df = build_dataframe_from_tesseract(_tesseract_dict())
    assert mean_confidence(df) == pytest.approx((90 + 80 + 70 + 60) / 400)
    assert mean_confidence(pd.DataFrame()) == 0.0


def test_recognize_requires_load():
    with pytest.raises(OCREngineError):
        TesseractEngine().recognize(b"", 6, 3)


def test_load_rejects_missing_language_data(monkeypatch):
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng", "osd"])
    with pytest.raises(OCREngineError, match="jpn"):
        TesseractEngine().load("eng+jpn")


def test_load_reports_missing_binary(monkeypatch):
    def missing():
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", missing)
    with pytest.raises(OCREngineError, match="not available"):
        TesseractEngine().load("eng")


def test_recognize_builds_text_from_image_to_data(monkeypatch):
    calls = {}

    def image_to_data(image, lang, config, output_type, timeout):
        calls.update(lang=lang, config=config, shape=image.shape)
        return _tesseract_dict()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng"])
    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)

    engine = TesseractEngine()
    engine.load("eng")
    png = render_text_image("TEST", 100, 40).data
    text, confidence = engine.recognize(png, 6, 3)
    assert text == "Hello world\nagain\n\nNext"
    assert confidence == pytest.approx(0.75)
    assert calls["lang"] == "eng"
    assert calls["config"] == "--psm 6 --oem 3"
    assert calls["shape"][:2] == (40, 100)

    with pytest.raises(OCREngineError):
        engine.recognize(b"not an image", 6, 3)

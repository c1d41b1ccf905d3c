import math

import pytest

from snaptrans.models import OCRResult
from snaptrans.ocr.normalizer import (
    CorrectionRule,
    OCRResultNormalizer,
    apply_corrections,
    clean_whitespace,
    is_valid_word,
    normalize_special_characters,
    normalize_unicode,
    rescore_confidence,
    strip_noise,
)


def _raw(text, confidence=0.9):
    return OCRResult(text=text, confidence=confidence, language="eng", processing_time_ms=12.0)


def test_normalize_unicode_folds_full_width():
    assert normalize_unicode("ＴＥＳＴ　１２３") == "TEST 123"
    assert normalize_unicode("a\r\nb") == "a\nb"


def test_strip_noise_drops_symbol_lines_and_runs():
    assert strip_noise("Hello\n~~~~ ##\nWorld") == "Hello\nWorld"
    assert strip_noise("Wow!!!!!!! aaaaaaa") == "Wow!!! aaa"
    assert strip_noise("a\n\n\n\n\n\nb") == "a\n\n\nb"
    assert strip_noise("日本語\n・・・") == "日本語"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("|t is", "It is"),
        ("| am here", "I am here"),
        ("0pen the door", "Open the door"),
        ("g0od", "good"),
        ("he1lo", "hello"),
        ("1l5 and 3I4", "115 and 314"),
        ("year 2O24", "year 2024"),
        ("0x1F stays", "0x1F stays"),
    ],
)
def test_apply_corrections_default_rules(text, expected):
    assert apply_corrections(text) == expected


def test_apply_corrections_respects_already_corrected_positions():
    rules = [CorrectionRule("a_to_b", "a", "b"), CorrectionRule("b_to_c", "b", "c")]
    assert apply_corrections("ab", rules) == "bc"


def test_apply_corrections_rejects_length_changes():
    with pytest.raises(ValueError):
        apply_corrections("abc", [CorrectionRule("grow", "b", "bb")])


def test_clean_whitespace_collapses_and_rejoins():
    assert clean_whitespace("  Hello    world  ") == "Hello world"
    assert clean_whitespace("This is a\nbroken line.") == "This is a broken line."
    assert clean_whitespace("an exam-\nple here") == "an example here"
    assert clean_whitespace("First line.\nSecond line") == "First line.\nSecond line"
    assert clean_whitespace("日本語の\nテキスト") == "日本語のテキスト"


@pytest.mark.parametrize(
    "text",
    [
        "  Hello    world  \n\n  next   paragraph ",
        "This is a\nbroken\nline.\n\n\nNew One",
        "exam-\nple\nand more-\nover",
    ],
)
def test_clean_whitespace_is_idempotent(text):
    once = clean_whitespace(text)
    assert clean_whitespace(once) == once


def test_normalize_special_characters():
    text = "“Hi” — it’s…"
    assert normalize_special_characters(text) == "\"Hi\" - it's..."
    assert normalize_special_characters("wait....") == "wait..."
    assert normalize_special_characters("wait⋯.") == "wait..."
    assert normalize_special_characters("so . . . on") == "so ... on"


def test_normalize_special_characters_keeps_long_vowel_mark():
    assert normalize_special_characters("コーヒー") == "コーヒー"


@pytest.mark.parametrize(
    "text",
    ["“Hi” — it’s…", "a -- b ... c", "«quoted» ‐ x", "wait⋯.", "so . . . . on", "ok ‘’‛′` done", "x ‐‑‒–— y"],
)
def test_normalize_special_characters_is_idempotent(text):
    once = normalize_special_characters(text)
    assert normalize_special_characters(once) == once


def test_is_valid_word():
    assert is_valid_word("Hello,")
    assert is_valid_word("2024")
    assert is_valid_word("日本語")
    assert is_valid_word("abc123")
    assert not is_valid_word("a")
    assert not is_valid_word("@@")


def test_rescore_confidence_rules():
    assert rescore_confidence("", 0.9) == 0.0
    assert rescore_confidence("   ", 0.9) == 0.0
    assert rescore_confidence("ab", 0.9) == pytest.approx(0.72)
    assert rescore_confidence("@@ ## $$ %%", 1.0) == pytest.approx(0.7 * 0.8 * 0.9)
    long_text = "This sentence is long enough to earn the bonus for lengthy text. " * 3
    assert rescore_confidence(long_text, 0.95) == 1.0


def test_rescore_confidence_handles_nan_and_out_of_range():
    assert rescore_confidence("Hello world", math.nan) == 0.0
    assert rescore_confidence("Hello world", 7.0) == 1.0
    assert rescore_confidence("Hello world", -1.0) == 0.0


@pytest.mark.parametrize(
    "text, confidence",
    [
        ("Hello world", 0.5),
        ("|||||||", 1.0),
        ("ＴＥＳＴ", 1.5),
        ("", 0.8),
        ("%%%% a", -0.3),
        ("日本語のテキスト", 0.99),
    ],
)
def test_normalize_confidence_is_clamped(text, confidence):
    result = OCRResultNormalizer().normalize(_raw(text, confidence))
    assert 0.0 <= result.confidence <= 1.0


def test_normalize_full_chain():
    raw = _raw("  ＨＥＬＬＯ   w0rld,\nthis is a\n~~~~~\n“test”…  ", 0.8)
    result = OCRResultNormalizer().normalize(raw)
    assert result.text == "HELLO world, this is a\n\"test\"..."
    assert result.language == "eng"
    assert result.timestamp == raw.timestamp
    assert raw.text.startswith("  ＨＥＬＬＯ")


def test_normalize_empty_text_forces_zero_confidence():
    result = OCRResultNormalizer().normalize(_raw("~~~ ***\n---", 0.99))
    assert result.text == ""
    assert result.confidence == 0.0


@pytest.mark.parametrize(
    "text",
    [
        "ok ‘’‛′` done",
        "x ‐‑‒–— y",
        "wait⋯.",
        "  ＨＥＬＬＯ   w0rld,\nthis is a\n~~~~~\n“test”…  ",
        "This is a\nbroken\nline.\n\n\n\n\nNew One",
    ],
)
def test_normalize_text_is_idempotent(text):
    normalizer = OCRResultNormalizer()
    once = normalizer.normalize_text(text)
    assert normalizer.normalize_text(once) == once


def test_folded_characters_do_not_form_long_runs():
    normalizer = OCRResultNormalizer()
    assert normalizer.normalize_text("ok ‘’‛′` done") == "ok ''' done"
    assert normalizer.normalize_text("x ‐‑‒–— y") == "x --- y"

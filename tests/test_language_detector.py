from snaptrans.translation.language_detector import detect_source_language, language_name


def test_detect_source_language_english_text():
    code, prob = detect_source_language(["This is a simple English sentence."])
    assert code == "en"
    assert prob is None or 0.0 <= prob <= 1.0


def test_detect_source_language_collapses_chinese_variants():
    code, _ = detect_source_language(["这是一个用于测试语言检测的简单中文句子。"])
    assert code == "zh"


def test_detect_source_language_empty_input():
    assert detect_source_language([]) == (None, None)
    assert detect_source_language(["", "   "]) == (None, None)


def test_language_name():
    assert language_name("en") == "English"
    assert language_name("ja") == "Japanese"
    assert language_name("en-US") == "English"
    assert language_name("xx") is None
    assert language_name(None) is None

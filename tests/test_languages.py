import pytest

from snaptrans.models import TranslationRequest
from snaptrans.translation.languages import build_translate_params, to_provider_language


@pytest.mark.parametrize(
    "code, expected",
    [("ja", "JA"), ("EN", "EN"), ("no", "NB"), ("zh", "ZH"), (" de ", "DE"), ("tr", "TR")],
)
def test_to_provider_language(code, expected):
    assert to_provider_language(code) == expected


def test_auto_source_is_omitted():
    params = build_translate_params(TranslationRequest(text="Hello", target_lang="ja", source_lang="auto"))
    assert params == {"text": "Hello", "target_lang": "JA"}


def test_explicit_source_and_flags():
    request = TranslationRequest(text="Hello", target_lang="de", source_lang="en")
    params = build_translate_params(request, formality="less", preserve_formatting=True)
    assert params == {
        "text": "Hello",
        "target_lang": "DE",
        "source_lang": "EN",
        "formality": "less",
        "preserve_formatting": "1",
    }

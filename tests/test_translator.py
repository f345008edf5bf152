import pytest
import threading
from typing import List
from unittest.mock import patch, MagicMock

import requests

from ziggurat.core.translator import BaseTranslator, is_blank, translate_segments
from ziggurat.core.google_translator import GoogleTranslator
from ziggurat.utils.exceptions import (
    APICallError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    TranslationError,
)


@pytest.fixture
def mock_translation_cache():
    """Mock TranslationCache"""
    mock_cache = MagicMock()
    mock_cache.get.return_value = None  # 默认缓存未命中
    mock_cache.set.return_value = None
    mock_cache.add_params.return_value = None

    with patch('ziggurat.core.translator.TranslationCache', return_value=mock_cache):
        yield mock_cache


class ConcreteTranslator(BaseTranslator):
    """用于测试 BaseTranslator 的具体子类，记录每次收到的批次"""
    name = "concrete_test"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches: List[List[str]] = []
        self._lock = threading.Lock()

    def do_translate_batch(self, texts: List[str]) -> List[str]:
        with self._lock:
            self.batches.append(list(texts))
        return [f"<{text}>" for text in texts]


# --- Test BaseTranslator ---

def test_is_blank():
    assert is_blank("")
    assert is_blank("  \n\t")
    assert not is_blank(" a ")


def test_base_translator_initialization(mock_translation_cache):
    """测试 BaseTranslator 初始化"""
    with patch('ziggurat.core.translator.TranslationCache', return_value=mock_translation_cache) as cache_cls:
        translator = ConcreteTranslator(lang_out="fr", ignore_cache=True)
    assert translator.name == "concrete_test"
    assert translator.lang_in is None
    assert translator.lang_out == "fr"
    assert translator.ignore_cache is True
    assert translator.cache == mock_translation_cache
    cache_cls.assert_called_once_with("concrete_test", {"lang_in": "auto", "lang_out": "fr"})


def test_base_translator_add_cache_impact_parameters(mock_translation_cache):
    """测试添加影响缓存的参数"""
    translator = ConcreteTranslator(lang_out="fr")
    translator.add_cache_impact_parameters("format", "text")
    mock_translation_cache.add_params.assert_called_once_with("format", "text")


def test_base_translator_translate_logic(mock_translation_cache):
    """测试 BaseTranslator.translate 的缓存和调用逻辑"""
    translator = ConcreteTranslator(lang_out="fr")

    # 场景1: 缓存命中
    mock_translation_cache.get.return_value = "Bonjour (cache)"
    assert translator.translate("Hello") == "Bonjour (cache)"
    mock_translation_cache.get.assert_called_once_with("Hello")
    mock_translation_cache.set.assert_not_called()
    assert translator.batches == []

    mock_translation_cache.reset_mock()

    # 场景2: 缓存未命中
    mock_translation_cache.get.return_value = None
    assert translator.translate("Hello") == "<Hello>"
    mock_translation_cache.set.assert_called_once_with("Hello", "<Hello>")

    mock_translation_cache.reset_mock()

    # 场景3: 调用时忽略缓存
    mock_translation_cache.get.return_value = "Bonjour (cache)"
    assert translator.translate("Hello", ignore_cache=True) == "<Hello>"
    mock_translation_cache.get.assert_not_called()
    mock_translation_cache.set.assert_called_once_with("Hello", "<Hello>")

    mock_translation_cache.reset_mock()

    # 场景4: 构造时忽略缓存
    translator_ignore = ConcreteTranslator(lang_out="fr", ignore_cache=True)
    assert translator_ignore.translate("Hello") == "<Hello>"
    mock_translation_cache.get.assert_not_called()


def test_translate_batch_only_sends_misses(mock_translation_cache):
    """空白原样返回，缓存命中的不再请求，其余保持顺序"""
    mock_translation_cache.get.side_effect = lambda text: "cached-b" if text == "b" else None
    translator = ConcreteTranslator(lang_out="fr")

    result = translator.translate_batch(["a", "  ", "b", "c"])

    assert result == ["<a>", "  ", "cached-b", "<c>"]
    assert translator.batches == [["a", "c"]]


def test_base_translator_str_method(mock_translation_cache):
    assert str(ConcreteTranslator(lang_out="fr")) == "concrete_test auto->fr"
    assert str(ConcreteTranslator(lang_out="fr", lang_in="en")) == "concrete_test en->fr"


# --- Test translate_segments ---

def test_translate_segments_keeps_order_and_blanks(mock_translation_cache):
    translator = ConcreteTranslator(lang_out="fr")
    texts = [f"t{i}" for i in range(7)]
    texts.insert(3, "   ")

    result = translate_segments(translator, texts, batch_size=2, max_concurrency=3)

    expected = [f"<{t}>" if t.strip() else t for t in texts]
    assert result == expected
    # 7 个非空片段，每批 2 个
    assert sorted(len(batch) for batch in translator.batches) == [1, 2, 2, 2]
    assert all("   " not in batch for batch in translator.batches)


def test_translate_segments_nothing_to_translate(mock_translation_cache):
    translator = ConcreteTranslator(lang_out="fr")
    assert translate_segments(translator, ["", " "]) == ["", " "]
    assert translator.batches == []


def test_translate_segments_propagates_failure(mock_translation_cache):
    class FailingTranslator(ConcreteTranslator):
        def do_translate_batch(self, texts):
            if "boom" in texts:
                raise APICallError("concrete_test", "500", "backend error")
            return super().do_translate_batch(texts)

    translator = FailingTranslator(lang_out="fr")
    with pytest.raises(APICallError, match="backend error"):
        translate_segments(translator, ["a", "boom", "c"], batch_size=1)


# --- Test GoogleTranslator ---

@pytest.fixture
def mock_requests_session():
    """Mock requests.Session for GoogleTranslator"""
    with patch('requests.Session') as mock_session_constructor:
        mock_session_instance = MagicMock()
        mock_session_constructor.return_value = mock_session_instance
        yield mock_session_instance


def make_response(status_code=200, json_data=None, reason="", headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def ok_response(translations):
    return make_response(json_data={
        "data": {"translations": [{"translatedText": t} for t in translations]}
    })


def test_google_translator_initialization(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="de")
    assert translator.name == "google"
    assert translator.endpoint == "https://translation.googleapis.com/language/translate/v2"
    assert translator.session == mock_requests_session
    assert translator.lang_out == "de"


def test_google_translator_success(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = ok_response(["Bonjour", "Monde"])

    result = translator.do_translate_batch(["Hello", "World"])

    assert result == ["Bonjour", "Monde"]
    mock_requests_session.post.assert_called_once_with(
        translator.endpoint,
        params={"key": "secret"},
        json={"q": ["Hello", "World"], "target": "fr", "format": "text"},
        timeout=30,
    )


def test_google_translator_sends_source_language(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr", lang_in="en")
    mock_requests_session.post.return_value = ok_response(["Bonjour"])

    translator.do_translate_batch(["Hello"])

    payload = mock_requests_session.post.call_args.kwargs["json"]
    assert payload["source"] == "en"


def test_google_translator_blank_not_sent(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = ok_response(["Bonjour"])

    assert translator.translate_batch([" ", "Hello", ""]) == [" ", "Bonjour", ""]
    payload = mock_requests_session.post.call_args.kwargs["json"]
    assert payload["q"] == ["Hello"]


def test_google_translator_splits_large_batches(mock_requests_session, mock_translation_cache):
    """超过每次请求 128 段的上限时拆分成多个请求，结果顺序不变"""
    translator = GoogleTranslator(api_key="secret", lang_out="fr")

    def echo(url, params, json, timeout):
        return ok_response([f"fr:{q}" for q in json["q"]])

    mock_requests_session.post.side_effect = echo
    texts = [f"line {i}" for i in range(130)]

    result = translator.do_translate_batch(texts)

    assert result == [f"fr:line {i}" for i in range(130)]
    sizes = [len(call.kwargs["json"]["q"]) for call in mock_requests_session.post.call_args_list]
    assert sizes == [128, 2]


def test_google_translator_splits_on_characters(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.side_effect = lambda url, params, json, timeout: ok_response(json["q"])
    texts = ["a" * 4000] * 10

    assert translator.do_translate_batch(texts) == texts
    sizes = [len(call.kwargs["json"]["q"]) for call in mock_requests_session.post.call_args_list]
    assert sizes == [7, 3]


def test_google_translator_text_too_long(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    with pytest.raises(TranslationError, match="Text too long"):
        translator.do_translate_batch(["a" * 5001])
    mock_requests_session.post.assert_not_called()


def test_google_translator_network_error(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.side_effect = requests.exceptions.ConnectionError("connection refused")

    with pytest.raises(NetworkError, match="connection refused") as exc_info:
        translator.do_translate_batch(["Hello"])
    assert exc_info.value.host == "translation.googleapis.com"


@pytest.mark.parametrize("status", [401, 403])
def test_google_translator_auth_error(mock_requests_session, mock_translation_cache, status):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = make_response(
        status, {"error": {"code": status, "message": "The caller does not have permission", "status": "PERMISSION_DENIED"}}
    )

    with pytest.raises(AuthenticationError, match="does not have permission") as exc_info:
        translator.do_translate_batch(["Hello"])
    assert exc_info.value.error_code == "PERMISSION_DENIED"
    assert exc_info.value.is_retryable is False


def test_google_translator_invalid_key(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="wrong", lang_out="fr")
    mock_requests_session.post.return_value = make_response(
        400, {"error": {"code": 400, "message": "API key not valid. Please pass a valid API key.", "status": "INVALID_ARGUMENT"}}
    )
    with pytest.raises(AuthenticationError):
        translator.do_translate_batch(["Hello"])


def test_google_translator_rate_limit(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = make_response(
        429, {"error": {"message": "Quota exceeded"}}, headers={"Retry-After": "5"}
    )

    with pytest.raises(RateLimitError) as exc_info:
        translator.do_translate_batch(["Hello"])
    assert exc_info.value.retry_after == 5


def test_google_translator_server_error(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = make_response(
        500, ValueError("no json"), reason="Internal Server Error"
    )

    with pytest.raises(APICallError, match="Internal Server Error") as exc_info:
        translator.do_translate_batch(["Hello"])
    assert type(exc_info.value) is APICallError
    assert exc_info.value.error_code == "500"


def test_google_translator_failed_extraction(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = make_response(json_data={"data": {}})

    with pytest.raises(TranslationError, match="Failed to extract translation result"):
        translator.do_translate_batch(["Hello"])


def test_google_translator_count_mismatch(mock_requests_session, mock_translation_cache):
    translator = GoogleTranslator(api_key="secret", lang_out="fr")
    mock_requests_session.post.return_value = ok_response(["Bonjour"])

    with pytest.raises(TranslationError, match="Expected 2 translations, got 1"):
        translator.do_translate_batch(["Hello", "World"])

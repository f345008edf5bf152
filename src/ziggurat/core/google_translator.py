from typing import List, Optional

import requests

from .translator import BaseTranslator
from ..utils.exceptions import (
    APICallError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    TranslationError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class GoogleTranslator(BaseTranslator):
    """Google Cloud Translation (Basic, v2) REST 客户端"""

    name = "google"
    endpoint = "https://translation.googleapis.com/language/translate/v2"

    # v2 单次请求的上限
    max_segments_per_request = 128
    max_chars_per_request = 30000
    max_text_length = 5000

    def __init__(
        self,
        api_key: str,
        lang_out: str,
        lang_in: Optional[str] = None,
        ignore_cache: bool = False,
        timeout: int = 30,
    ):
        super().__init__(lang_out=lang_out, lang_in=lang_in, ignore_cache=ignore_cache)
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        logger.debug(f"Initialized {self.name} translator")

    def _split_requests(self, texts: List[str]) -> List[List[str]]:
        """按片段数和字符数上限切分请求"""
        chunks: List[List[str]] = []
        current: List[str] = []
        current_chars = 0
        for text in texts:
            if current and (
                len(current) >= self.max_segments_per_request
                or current_chars + len(text) > self.max_chars_per_request
            ):
                chunks.append(current)
                current, current_chars = [], 0
            current.append(text)
            current_chars += len(text)
        if current:
            chunks.append(current)
        return chunks

    def do_translate_batch(self, texts: List[str]) -> List[str]:
        """执行翻译"""
        for text in texts:
            if len(text) > self.max_text_length:
                logger.error(f"Text length ({len(text)}) exceeds limit ({self.max_text_length})")
                raise TranslationError(
                    f"Text too long for Google Translate (max {self.max_text_length} chars)"
                )

        translations: List[str] = []
        for chunk in self._split_requests(texts):
            translations.extend(self._request(chunk))
        return translations

    def _request(self, texts: List[str]) -> List[str]:
        payload = {"q": texts, "target": self.lang_out, "format": "text"}
        if self.lang_in:
            payload["source"] = self.lang_in

        logger.debug(f"Sending {len(texts)} segments to Google Translate, first: {texts[0][:100]}...")
        try:
            response = self.session.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Request failed: {str(e)}")
            raise NetworkError("translation.googleapis.com", str(e))

        if response.status_code != 200:
            self._raise_for_error(response)

        try:
            data = response.json()
            translations = [t["translatedText"] for t in data["data"]["translations"]]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Failed to extract translation from response")
            raise TranslationError(f"Failed to extract translation result: {e}")

        if len(translations) != len(texts):
            raise TranslationError(
                f"Expected {len(texts)} translations, got {len(translations)}"
            )
        logger.debug(f"Translation successful. First result: {translations[0][:100]}...")
        return translations

    def _raise_for_error(self, response: requests.Response):
        """将错误响应映射为异常；错误体格式 {"error": {"code", "message", "status"}}"""
        status = response.status_code
        message = response.reason or "request failed"
        error_code = str(status)
        try:
            error = response.json().get("error", {})
            message = error.get("message") or message
            error_code = error.get("status") or error_code
        except (ValueError, AttributeError):
            pass

        logger.error(f"Google Translate API returned {status}: {message}")
        # 无效密钥返回 400 INVALID_ARGUMENT，消息为 "API key not valid..."
        if status in (401, 403) or (status == 400 and "API key" in message):
            raise AuthenticationError(self.name, error_code, message)
        if status == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise RateLimitError(self.name, int(retry_after) if retry_after.isdigit() else 60)
        raise APICallError(self.name, error_code, message)

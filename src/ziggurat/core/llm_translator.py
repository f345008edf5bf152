from string import Template
from typing import List, Optional
from urllib.parse import urlparse

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

DEFAULT_MODEL = "llama-3.2-3B"
DEFAULT_PROMPT = Template("Please translate the following into ${lang_out}:\n${text}")


class LlmTranslator(BaseTranslator):
    """
    OpenAI 风格 completions 接口的 LLM 翻译器
    每段文本单独请求：POST {endpoint}/v1/{model}/completions，
    译文取 choices 中最后一项的 text
    """

    name = "llm"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        lang_out: str,
        lang_in: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        prompt: Optional[Template] = None,
        ignore_cache: bool = False,
        timeout: int = 60,
    ):
        super().__init__(lang_out=lang_out, lang_in=lang_in, ignore_cache=ignore_cache)
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.prompt_template = prompt or DEFAULT_PROMPT
        self.timeout = timeout
        self.session = requests.Session()
        # 模型、服务地址和提示词不同，译文也不同
        self.add_cache_impact_parameters("model", model)
        self.add_cache_impact_parameters("endpoint", self.endpoint)
        self.add_cache_impact_parameters("prompt", self.prompt_template.template)
        logger.debug(f"Initialized {self.name} translator with model {model} at {self.endpoint}")

    @property
    def url(self) -> str:
        return f"{self.endpoint}/v1/{self.model}/completions"

    def prompt(self, text: str) -> str:
        return self.prompt_template.safe_substitute(
            lang_in=self.lang_in or "auto",
            lang_out=self.lang_out,
            text=text,
        )

    def do_translate_batch(self, texts: List[str]) -> List[str]:
        return [self._request(text) for text in texts]

    def _request(self, text: str) -> str:
        payload = {
            "model": self.model,
            "prompt": self.prompt(text),
            "max_tokens": self.max_tokens,
        }
        logger.debug(f"Sending text to {self.url}: {text[:100]}...")
        try:
            response = self.session.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Request failed: {str(e)}")
            parsed = urlparse(self.endpoint)
            raise NetworkError(parsed.hostname or self.endpoint, str(e), parsed.port)

        if not 200 <= response.status_code < 300:
            self._raise_for_error(response)

        try:
            choices = response.json()["choices"]
            translation = choices[-1]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Failed to extract translation from response")
            raise TranslationError(f"Failed to extract translation result: {e}")
        if not isinstance(translation, str):
            raise TranslationError("Completion text is not a string")
        return translation.strip()

    def _raise_for_error(self, response: requests.Response):
        """将错误响应映射为异常；错误体格式 {"error": {"message", "type"|"code"}} 或纯文本"""
        status = response.status_code
        error_code = str(status)
        message = response.reason or "request failed"
        try:
            error = response.json().get("error", {})
            if isinstance(error, str):
                message = error
            else:
                message = error.get("message") or message
                error_code = str(error.get("code") or error.get("type") or error_code)
        except (ValueError, AttributeError):
            text = getattr(response, "text", "")
            if isinstance(text, str) and text.strip():
                message = text.strip()[:200]

        logger.error(f"LLM API returned {status}: {message}")
        if status in (401, 403):
            raise AuthenticationError(self.name, error_code, message)
        if status == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise RateLimitError(self.name, int(retry_after) if retry_after.isdigit() else 60)
        raise APICallError(self.name, error_code, message)

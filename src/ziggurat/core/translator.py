from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence
import logging

import tqdm

from ..infrastructure.cache import TranslationCache
from ..utils.logger import get_logger

logger = get_logger(__name__)


def is_blank(text: str) -> bool:
    """纯空白片段不需要翻译"""
    return not text or text.isspace()


class BaseTranslator(ABC):
    """翻译器基类"""

    name: str = ""  # 翻译器名称

    def __init__(
        self,
        lang_out: str,
        lang_in: Optional[str] = None,
        ignore_cache: bool = False,
    ):
        """
        初始化翻译器
        Args:
            lang_out: 目标语言代码
            lang_in: 源语言代码，None 表示由服务自动检测
            ignore_cache: 是否忽略缓存
        """
        self.lang_in = lang_in
        self.lang_out = lang_out
        self.ignore_cache = ignore_cache
        self.cache = TranslationCache(
            self.name,
            {"lang_in": lang_in or "auto", "lang_out": lang_out},
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{self.name} translator initialized with lang_in={self.lang_in}, lang_out={self.lang_out}")

    def add_cache_impact_parameters(self, k: str, v):
        """添加影响翻译结果的参数以区分不同参数下的缓存"""
        self.cache.add_params(k, v)

    def translate(self, text: str, ignore_cache: bool = False) -> str:
        """翻译单段文本"""
        return self.translate_batch([text], ignore_cache=ignore_cache)[0]

    def translate_batch(self, texts: Sequence[str], ignore_cache: bool = False) -> List[str]:
        """
        翻译一批文本，这是其他部分应该调用的方法
        1. 空白文本原样返回
        2. 先查缓存，只有未命中的文本交给 do_translate_batch
        3. 译文写回缓存
        Returns:
            与输入顺序一一对应的译文
        """
        results: List[Optional[str]] = [None] * len(texts)
        pending: List[int] = []
        use_cache = not (self.ignore_cache or ignore_cache)

        for i, text in enumerate(texts):
            if is_blank(text):
                results[i] = text
                continue
            if use_cache:
                cached = self.cache.get(text)
                if cached is not None:
                    results[i] = cached
                    continue
            pending.append(i)

        if pending:
            translations = self.do_translate_batch([texts[i] for i in pending])
            for i, translation in zip(pending, translations):
                results[i] = translation
                self.cache.set(texts[i], translation)

        return results

    @abstractmethod
    def do_translate_batch(self, texts: List[str]) -> List[str]:
        """
        实际执行翻译的方法，子类必须实现
        Args:
            texts: 非空白的待译文本
        Returns:
            与输入顺序一致、数量相同的译文
        """
        raise NotImplementedError

    def __str__(self):
        return f"{self.name} {self.lang_in or 'auto'}->{self.lang_out}"


def translate_segments(
    translator: BaseTranslator,
    texts: Sequence[str],
    batch_size: int = 10,
    max_concurrency: int = 5,
) -> List[str]:
    """
    将文档中的所有文本片段分批并行翻译
    Args:
        translator: 翻译器
        texts: 按文档顺序排列的文本片段
        batch_size: 每次请求包含的片段数
        max_concurrency: 同时进行的请求数
    Returns:
        与 texts 一一对应的译文；空白片段原样保留
    """
    results = list(texts)
    indices = [i for i, text in enumerate(texts) if not is_blank(text)]
    if not indices:
        return results

    batches = [indices[i:i + batch_size] for i in range(0, len(indices), batch_size)]
    logger.info(f"Translating {len(indices)} segments in {len(batches)} batches")

    def run(batch: List[int]) -> List[str]:
        return translator.translate_batch([texts[i] for i in batch])

    # executor.map 保持提交顺序；任一批失败时异常在取结果处抛出
    with ThreadPoolExecutor(max_workers=max_concurrency) as executor:
        with tqdm.tqdm(total=len(indices), unit="seg") as progress:
            for batch, translations in zip(batches, executor.map(run, batches)):
                for i, translation in zip(batch, translations):
                    results[i] = translation
                progress.update(len(batch))

    return results

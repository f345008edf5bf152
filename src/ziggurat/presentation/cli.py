#!/usr/bin/env python3

import argparse
import sys
import time
import logging
from typing import List, Optional

from ziggurat import __version__, logger
from ziggurat.core.document import translate
from ziggurat.core.google_translator import GoogleTranslator
from ziggurat.core.llm_translator import LlmTranslator
from ziggurat.core.translator import BaseTranslator
from ziggurat.infrastructure.cache import init_db, close_db
from ziggurat.infrastructure.config import PROVIDERS, Settings, resolve_settings
from ziggurat.utils.logger import set_log_level, enable_debug
from ziggurat.utils.exceptions import ZigguratError, ValidationError


def parse_page_ranges(page_str: Optional[str]) -> Optional[List[int]]:
    """将 '1,3,5-7' 这样的字符串解析为页面索引列表 [0, 2, 4, 5, 6]。"""
    if not page_str:
        return None
    pages = set()
    try:
        for part in page_str.split(','):
            part = part.strip()
            if '-' in part:
                start, end = map(int, part.split('-'))
                if start < 1 or end < start:
                    raise ValueError(f"invalid page range: {part}")
                # 使用 0-based 索引
                pages.update(range(start - 1, end))
            else:
                page_num = int(part)
                if page_num < 1:
                    raise ValueError(f"invalid page number: {part}")
                pages.add(page_num - 1)
    except ValueError as e:
        raise ValidationError("pages", page_str, str(e))
    return sorted(pages)


def format_time(seconds: float) -> str:
    """将秒数格式化为人类可读的时间字符串"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds / 60:.1f}min"
    else:
        return f"{seconds / 3600:.1f}h"


def build_translator(settings: Settings) -> BaseTranslator:
    """根据配置创建翻译器"""
    if settings.provider == "llm":
        return LlmTranslator(
            api_key=settings.api_key,
            endpoint=settings.endpoint,
            lang_out=settings.target_language,
            lang_in=settings.source_language,
            model=settings.model,
            ignore_cache=settings.ignore_cache,
        )
    return GoogleTranslator(
        api_key=settings.api_key,
        lang_out=settings.target_language,
        lang_in=settings.source_language,
        ignore_cache=settings.ignore_cache,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ziggurat",
        description="Ziggurat: translate PDF and EPUB documents with the Google Translate API or an LLM completions endpoint.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--input", "-i",
        type=str,
        required=True,
        help="Path of the PDF or EPUB document to translate.",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        required=True,
        help="Path of the translated document; must have the same format as the input.",
    )
    parser.add_argument(
        "--to",
        type=str,
        required=True,
        help="Target language code, e.g. 'fr' or 'zh-CN'.",
    )
    parser.add_argument(
        "--from",
        dest="source",
        type=str,
        default=None,
        help="Source language code. Detected by the API when omitted.",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="API key of the translation service. Overrides the config file, .env and ZIGGURAT_API_KEY.",
    )
    parser.add_argument(
        "--provider",
        type=str,
        choices=PROVIDERS,
        default=None,
        help="Translation service (config file or 'google' when omitted).",
    )
    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help="Base URL of the LLM service; requests go to {endpoint}/v1/{model}/completions.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="LLM model name (config file or 'llama-3.2-3B' when omitted).",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path of a JSON config file. Defaults to ~/.config/ziggurat/config.json.",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path of a .env file. Defaults to .env in the working directory.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Number of text segments sent per request (config file or 10 when omitted).",
    )
    parser.add_argument(
        "--threads", "-t",
        type=int,
        default=None,
        help="Number of requests in flight (config file or 5 when omitted).",
    )
    parser.add_argument(
        "--pages", "-p",
        type=str,
        default=None,
        help="PDF only: pages to translate, e.g. '1,3,5-7'. All pages when omitted.",
    )
    parser.add_argument(
        "--ignore-cache",
        action="store_true",
        default=False,
        help="Ignore cached translations and call the API for every segment.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"ziggurat {__version__}",
    )
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    if args.verbose:
        enable_debug()
        logger.debug("Debug logging enabled.")
    else:
        set_log_level(logging.INFO)

    logger.info(f"Starting ziggurat v{__version__}")

    try:
        settings = resolve_settings(args)
        logger.debug(f"Effective settings: {settings!r}")
        page_list = parse_page_ranges(args.pages)

        init_db()
        translator = build_translator(settings)
        logger.info(f"Using translator {translator}")

        start_time = time.time()
        output_path = translate(
            settings.input_path,
            settings.output_path,
            translator,
            batch_size=settings.batch_size,
            max_concurrency=settings.max_concurrency,
            pages=page_list,
        )
        logger.info(f"Translation finished in {format_time(time.time() - start_time)}: {output_path}")
        sys.exit(0)

    except ZigguratError as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            logger.exception("Traceback:")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting...")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            logger.exception("Traceback:")
        sys.exit(1)
    finally:
        close_db()


if __name__ == "__main__":
    main()

# 文档级翻译入口：识别文件类型、检查输出格式、调度到 PDF/EPUB 处理器并写出结果

import os
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Union

from . import epub_processor, pdf_processor
from .translator import BaseTranslator
from ..utils.exceptions import FileReadError, OutputWriteError, UnsupportedFormatError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class FileType(Enum):
    PDF = "pdf"
    EPUB = "epub"

    @property
    def suffix(self) -> str:
        return f".{self.value}"


def detect_file_type(path: Union[str, Path]) -> FileType:
    """
    根据文件头识别类型：
    %PDF 开头为 PDF，PK（zip 容器）开头为 EPUB，其余不支持
    """
    path = Path(path)
    if not path.exists():
        raise FileReadError(str(path), "file does not exist")
    if not path.is_file():
        raise FileReadError(str(path), "not a regular file")
    try:
        with open(path, "rb") as f:
            header = f.read(4)
    except OSError as e:
        raise FileReadError(str(path), str(e))

    if header == b"%PDF":
        return FileType.PDF
    if header[:2] == b"PK":
        return FileType.EPUB
    raise UnsupportedFormatError(str(path), "input is neither a PDF nor an EPUB document")


def check_output_format(input_type: FileType, output_path: Union[str, Path]) -> None:
    """输出文件必须与输入同格式"""
    suffix = Path(output_path).suffix.lower()
    if suffix != input_type.suffix:
        raise UnsupportedFormatError(
            str(output_path),
            f"{input_type.name} input must be written to a '{input_type.suffix}' file, got '{suffix or 'no extension'}'",
        )


def write_output(output_path: Union[str, Path], data: bytes) -> None:
    """写出结果，不存在的输出目录会被创建"""
    output_path = Path(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise OutputWriteError(str(output_path), str(e))


def translate(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    translator: BaseTranslator,
    batch_size: int = 10,
    max_concurrency: int = 5,
    pages: Optional[Sequence[int]] = None,
) -> Path:
    """
    翻译单个文档
    Args:
        input_path: 输入 PDF 或 EPUB
        output_path: 输出文件，扩展名须与输入类型一致
        translator: 翻译器
        batch_size: 每次请求包含的片段数
        max_concurrency: 同时进行的请求数
        pages: 仅对 PDF 有效，要翻译的页码（从 0 开始）
    Returns:
        输出文件路径
    """
    file_type = detect_file_type(input_path)
    check_output_format(file_type, output_path)
    logger.info(f"Converting {file_type.name} file {input_path} to {translator.lang_out}...")

    try:
        with open(input_path, "rb") as f:
            stream = f.read()
    except OSError as e:
        raise FileReadError(str(input_path), str(e))

    if file_type is FileType.PDF:
        result = pdf_processor.translate_stream(
            stream,
            translator,
            batch_size=batch_size,
            max_concurrency=max_concurrency,
            pages=pages,
        )
    else:
        if pages is not None:
            logger.warning("Page selection only applies to PDF documents; translating the whole book")
        result = epub_processor.translate_stream(
            stream,
            translator,
            batch_size=batch_size,
            max_concurrency=max_concurrency,
        )

    write_output(output_path, result)
    size = os.path.getsize(output_path) / (1024 * 1024)
    logger.info(f"Wrote {output_path} ({size:.2f} MB)")
    return Path(output_path)

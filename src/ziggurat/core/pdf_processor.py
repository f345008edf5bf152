# PDF 翻译的高层流程：
# pdfminer 检查文档结构，PyMuPDF 提取文本块、擦除原文并在原位置写入译文
# 图片与矢量图形不做任何改动

import html
import io
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pymupdf
import tqdm
from pdfminer.pdfdocument import PDFDocument, PDFEncryptionError
from pdfminer.pdfparser import PDFParser
from pdfminer.psparser import PSException

from .translator import BaseTranslator, is_blank, translate_segments
from ..utils.exceptions import PDFFormatError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# 粗体标志位（span["flags"]）
_FLAG_BOLD = 1 << 4


@dataclass
class TextBlock:
    """页面上的一个文本块及其排版信息；span_rects 为块内各 span 的外框"""
    pageno: int
    rect: Tuple[float, float, float, float]
    text: str
    fontsize: float
    color: int = 0
    bold: bool = False
    span_rects: List[Tuple[float, float, float, float]] = field(default_factory=list)


@dataclass
class FixedSpan:
    """不翻译的 span（竖排/旋转文本块中的文字），被涂黑波及时需原样写回"""
    rect: Tuple[float, float, float, float]
    origin: Tuple[float, float]
    text: str
    fontsize: float
    color: int = 0
    rotate: int = 0


def check_pdf(stream: bytes) -> None:
    """用 pdfminer 解析文档结构，尽早发现损坏或加密的文件"""
    parser = PDFParser(io.BytesIO(stream))
    try:
        doc = PDFDocument(parser)
    except PDFEncryptionError as e:
        raise PDFFormatError(f"document is encrypted: {e}")
    except PSException as e:
        raise PDFFormatError(str(e))
    if not doc.is_extractable:
        logger.warning("PDF permissions disallow text extraction; translating anyway")


def _is_rotated(block: dict) -> bool:
    return any(tuple(line.get("dir", (1, 0))) != (1, 0) for line in block.get("lines", []))


def _line_rotation(line: dict) -> int:
    # dir 为 (cos, -sin)，取最接近的 90 度倍数
    dx, dy = line.get("dir", (1, 0))
    angle = math.degrees(math.atan2(-dy, dx))
    return int(90 * round(angle / 90)) % 360


def extract_text_blocks(doc: pymupdf.Document, pages: Optional[Sequence[int]] = None) -> List[TextBlock]:
    """
    逐页收集可翻译的文本块
    1. 行内 span 直接拼接，行与行之间用空格连接
    2. 字号、颜色、粗细取第一个非空 span
    3. 跳过竖排/旋转文本，这类文本无法在原矩形内重排
    """
    blocks: List[TextBlock] = []
    for pageno, page in enumerate(doc):
        if pages is not None and pageno not in pages:
            continue
        for block in page.get_text("dict")["blocks"]:
            if block.get("type") != 0:
                continue
            if _is_rotated(block):
                logger.debug(f"Skipping rotated text block on page {pageno}")
                continue

            texts = []
            span_rects = []
            first_span = None
            for line in block.get("lines", []):
                line_text = "".join(span["text"] for span in line["spans"]).strip()
                if line_text:
                    texts.append(line_text)
                for span in line["spans"]:
                    if span["text"].strip():
                        span_rects.append(tuple(span["bbox"]))
                        if first_span is None:
                            first_span = span
            text = " ".join(texts)
            if is_blank(text) or first_span is None:
                continue

            blocks.append(TextBlock(
                pageno=pageno,
                rect=tuple(block["bbox"]),
                text=text,
                fontsize=first_span["size"],
                color=first_span.get("color", 0),
                bold=bool(first_span.get("flags", 0) & _FLAG_BOLD),
                span_rects=span_rects,
            ))
    return blocks


def fixed_spans(page: pymupdf.Page) -> List[FixedSpan]:
    """页面上所有被跳过的文本块中的 span"""
    spans: List[FixedSpan] = []
    for block in page.get_text("dict")["blocks"]:
        if block.get("type") != 0 or not _is_rotated(block):
            continue
        for line in block.get("lines", []):
            rotate = _line_rotation(line)
            for span in line["spans"]:
                if is_blank(span["text"]):
                    continue
                spans.append(FixedSpan(
                    rect=tuple(span["bbox"]),
                    origin=tuple(span["origin"]),
                    text=span["text"],
                    fontsize=span["size"],
                    color=span.get("color", 0),
                    rotate=rotate,
                ))
    return spans


def overlapped_spans(redact_rects: Sequence[pymupdf.Rect], spans: Sequence[FixedSpan]) -> List[FixedSpan]:
    """
    找出会被涂黑波及的 span
    涂黑以字形为单位删除文字，与涂黑区域相交的 span 会残缺，
    因此整段 span 一并删除后再写回；新加入的区域可能继续波及其他 span，直到不再变化
    """
    areas = [pymupdf.Rect(r) for r in redact_rects]
    remaining = list(spans)
    hit: List[FixedSpan] = []
    changed = True
    while changed:
        changed = False
        for span in list(remaining):
            rect = pymupdf.Rect(span.rect)
            if any(rect.intersects(area) for area in areas):
                hit.append(span)
                areas.append(rect)
                remaining.remove(span)
                changed = True
    return hit


def _block_css(block: TextBlock) -> str:
    weight = " font-weight: bold;" if block.bold else ""
    return (
        f"* {{font-family: sans-serif; font-size: {block.fontsize:g}px; "
        f"color: #{block.color:06x};{weight} margin: 0; padding: 0;}}"
    )


def render_translations(doc: pymupdf.Document, blocks: Sequence[TextBlock], translations: Sequence[str]) -> None:
    """
    将译文写回页面：
    1. 对文本块内每个 span 加无填充的涂黑注释，只清除该块自己的文字
    2. 被波及的旋转文字整段清除，应用涂黑后原样写回
    3. 应用涂黑时保留图片和线条
    4. 在原矩形中写入译文，放不下时自动缩小
    """
    by_page: Dict[int, List[Tuple[TextBlock, str]]] = {}
    for block, translation in zip(blocks, translations):
        by_page.setdefault(block.pageno, []).append((block, translation))

    with tqdm.tqdm(total=len(by_page), unit="page") as progress:
        for pageno, items in by_page.items():
            page = doc[pageno]
            redact_rects = [pymupdf.Rect(r) for block, _ in items for r in block.span_rects]
            restore = overlapped_spans(redact_rects, fixed_spans(page))
            if restore:
                logger.debug(f"Page {pageno}: restoring {len(restore)} overlapped rotated spans")
            for rect in redact_rects + [pymupdf.Rect(span.rect) for span in restore]:
                page.add_redact_annot(rect, fill=False)
            page.apply_redactions(
                images=pymupdf.PDF_REDACT_IMAGE_NONE,
                graphics=pymupdf.PDF_REDACT_LINE_ART_NONE,
            )
            for span in restore:
                page.insert_text(
                    span.origin,
                    span.text,
                    fontsize=span.fontsize,
                    color=pymupdf.sRGB_to_pdf(span.color),
                    rotate=span.rotate,
                )
            for block, translation in items:
                spare_height, scale = page.insert_htmlbox(
                    pymupdf.Rect(block.rect),
                    html.escape(translation),
                    css=_block_css(block),
                    scale_low=0,
                )
                if logger.isEnabledFor(logging.DEBUG) and scale < 1:
                    logger.debug(f"Page {pageno}: text scaled to {scale:.2f} to fit {block.rect}")
            progress.update()


def check_pages(pages: Optional[Sequence[int]], page_count: int) -> Optional[List[int]]:
    """
    去掉超出文档范围的页码（从 0 开始）
    部分页码越界时记录警告，全部越界时报错
    """
    if pages is None:
        return None
    valid = [pageno for pageno in pages if 0 <= pageno < page_count]
    missing = [pageno + 1 for pageno in pages if not 0 <= pageno < page_count]
    if missing and not valid:
        raise ValidationError(
            "pages", ",".join(str(p) for p in missing), f"document has only {page_count} pages"
        )
    if missing:
        logger.warning(f"Ignoring pages beyond the end of the document ({page_count} pages): {missing}")
    return valid


def translate_stream(
    stream: bytes,
    translator: BaseTranslator,
    batch_size: int = 10,
    max_concurrency: int = 5,
    pages: Optional[Sequence[int]] = None,
) -> bytes:
    """翻译 PDF 二进制内容，返回译文 PDF 的二进制内容；页数与原文相同"""
    check_pdf(stream)
    try:
        doc = pymupdf.Document(stream=stream, filetype="pdf")
    except RuntimeError as e:
        raise PDFFormatError(str(e))

    try:
        if doc.needs_pass:
            raise PDFFormatError("document is password protected")
        logger.info(f"Starting PDF translation with {doc.page_count} pages")

        pages = check_pages(pages, doc.page_count)
        blocks = extract_text_blocks(doc, pages)
        logger.info(f"Found {len(blocks)} text blocks")
        translations = translate_segments(
            translator,
            [block.text for block in blocks],
            batch_size=batch_size,
            max_concurrency=max_concurrency,
        )
        render_translations(doc, blocks, translations)
        logger.info("PDF translation completed successfully")
        return doc.tobytes(deflate=True, garbage=3, use_objstms=1)
    finally:
        doc.close()

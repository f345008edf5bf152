"""
EPUB 文件处理：读取、提取文本节点、写回译文并重新打包。

容器、OPF 和导航的解析与生成交给 ebooklib，HTML 交给 BeautifulSoup；
这里只负责决定哪些文本需要翻译以及如何放回原位。
"""
import io
import zipfile
from dataclasses import dataclass
from typing import Iterator, List

from bs4 import BeautifulSoup
from bs4.element import NavigableString, Tag
from ebooklib import ITEM_DOCUMENT, epub

from .translator import BaseTranslator, is_blank, translate_segments
from ..utils.exceptions import EPUBFormatError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# 内容不可翻译的标签
IGNORED_TAGS = {"script", "style"}

# 页码标记（<span epub:type="pagebreak" title="12">12</span>）里的数字保持原样
PAGEBREAK_MARKERS = ("pagebreak", "doc-pagebreak")


@dataclass
class TextNode:
    """一个待翻译的文本节点，core 为去掉首尾空白后的文本"""
    node: NavigableString
    leading: str
    core: str
    trailing: str

    @classmethod
    def from_node(cls, node: NavigableString) -> "TextNode":
        text = str(node)
        core = text.strip()
        start = text.index(core)
        return cls(node, text[:start], core, text[start + len(core):])


@dataclass
class Chapter:
    """spine 中的一个 XHTML 文档"""
    item: epub.EpubHtml
    soup: BeautifulSoup
    nodes: List[TextNode]

    def render(self) -> epub.EpubItem:
        """
        生成写回用的条目
        EpubHtml 写出时会按模板重建 <head>，丢掉样式表链接和标题；
        改用普通 EpubItem，原样写出译后的文档
        """
        rendered = epub.EpubItem(
            uid=self.item.get_id(),
            file_name=self.item.file_name,
            media_type=self.item.media_type,
            content=self.soup.encode("utf-8"),
        )
        rendered.is_linear = getattr(self.item, "is_linear", True)
        properties = getattr(self.item, "properties", None)
        if properties:
            rendered.properties = list(properties)
        return rendered


def _is_pagebreak(tag: Tag) -> bool:
    for attr in ("epub:type", "role"):
        value = tag.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        if value and any(marker in value.split() for marker in PAGEBREAK_MARKERS):
            return True
    return False


def _should_ignore(node: NavigableString) -> bool:
    # Comment、Doctype、CData、处理指令等都是 NavigableString 的子类
    if type(node) is not NavigableString or is_blank(str(node)):
        return True
    for parent in node.parents:
        if parent.name in IGNORED_TAGS or _is_pagebreak(parent):
            return True
    return False


def iter_text_nodes(soup: BeautifulSoup) -> Iterator[TextNode]:
    """按文档顺序产出需要翻译的文本节点"""
    for node in soup.find_all(string=True):
        if not _should_ignore(node):
            yield TextNode.from_node(node)


def read_book(data: bytes) -> epub.EpubBook:
    if not zipfile.is_zipfile(io.BytesIO(data)):
        raise EPUBFormatError("not a zip container")
    try:
        return epub.read_epub(io.BytesIO(data), {"ignore_ncx": False})
    except (epub.EpubException, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise EPUBFormatError(str(e))


def spine_documents(book: epub.EpubBook) -> List[epub.EpubHtml]:
    """
    按 spine 顺序返回文档类条目；不在 spine 中的文档排在最后
    导航文档由 ebooklib 写出时根据目录重新生成，不在此列
    """
    spine_ids = [entry[0] if isinstance(entry, tuple) else entry for entry in book.spine]
    documents = [
        item for item in book.get_items_of_type(ITEM_DOCUMENT)
        if not isinstance(item, epub.EpubNav)
    ]
    order = {item_id: i for i, item_id in enumerate(spine_ids)}
    return sorted(documents, key=lambda item: order.get(item.get_id(), len(order)))


def load_chapters(book: epub.EpubBook) -> List[Chapter]:
    # item.content 是文件原始内容；get_content() 会按模板重建文档，丢掉 <head>
    chapters = []
    for item in spine_documents(book):
        soup = BeautifulSoup(item.content, "html.parser")
        chapters.append(Chapter(item, soup, list(iter_text_nodes(soup))))
    return chapters


def set_book_language(book: epub.EpubBook, language: str) -> None:
    """用目标语言替换 dc:language，其余元数据不变"""
    book.language = language
    book.metadata.setdefault(epub.NAMESPACES["DC"], {})["language"] = [(language, {})]


def apply_translations(chapters: List[Chapter], translations: List[str]) -> None:
    """将译文按顺序写回各章节，保留原节点的首尾空白"""
    position = 0
    for chapter in chapters:
        for text_node in chapter.nodes:
            translated = translations[position]
            position += 1
            text_node.node.replace_with(
                NavigableString(f"{text_node.leading}{translated}{text_node.trailing}")
            )


def replace_chapters(book: epub.EpubBook, chapters: List[Chapter]) -> None:
    """用译后的条目替换原章节，保持条目在清单中的位置"""
    rendered = {id(chapter.item): chapter.render() for chapter in chapters}
    for item in rendered.values():
        item.book = book
    book.items = [rendered.get(id(item), item) for item in book.items]


def translate_stream(
    stream: bytes,
    translator: BaseTranslator,
    batch_size: int = 10,
    max_concurrency: int = 5,
) -> bytes:
    """翻译 EPUB 二进制内容，返回译文 EPUB 的二进制内容"""
    book = read_book(stream)
    chapters = load_chapters(book)
    texts = [node.core for chapter in chapters for node in chapter.nodes]
    logger.info(f"Starting EPUB translation: {len(chapters)} documents, {len(texts)} text nodes")

    translations = translate_segments(
        translator,
        texts,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
    )
    apply_translations(chapters, translations)
    replace_chapters(book, chapters)
    set_book_language(book, translator.lang_out)

    output = io.BytesIO()
    try:
        epub.write_epub(output, book)
    except (epub.EpubException, KeyError, ValueError, AttributeError) as e:
        raise EPUBFormatError(f"failed to rebuild book: {e}")
    logger.info("EPUB translation completed successfully")
    return output.getvalue()

"""Ziggurat - translate PDF and EPUB documents while keeping their layout"""
from ziggurat.utils.logger import get_logger
from ziggurat.core.document import translate, detect_file_type, FileType

logger = get_logger(__name__)

__version__ = "0.1.0"
__all__ = ["translate", "detect_file_type", "FileType"]

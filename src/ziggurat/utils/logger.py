"""日志管理模块

提供统一的日志配置和管理功能，包括:
1. 日志格式化
2. 日志级别控制
3. 多目标输出(控制台、文件)
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Union
from datetime import datetime

ROOT_LOGGER_NAME = "ziggurat"

class LoggerManager:
    """日志管理器

    负责统一配置和管理项目中的所有日志记录器
    """

    # 默认日志格式
    DEFAULT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
    # 详细日志格式（用于文件日志）
    DETAILED_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'

    def __init__(self, log_dir: Union[str, Path, None] = None):
        self.log_dir = Path(log_dir) if log_dir else Path.home() / ".cache" / "ziggurat" / "logs"

        # 初始化根日志记录器
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.root_logger.setLevel(logging.INFO)

        # 避免日志重复
        self.root_logger.propagate = False

        # 清除现有的处理器
        self.root_logger.handlers.clear()

        # 初始化处理器
        self._setup_console_handler()
        self._setup_file_handler()

    def _setup_console_handler(self):
        """配置控制台日志处理器"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(self.DEFAULT_FORMAT))
        self.root_logger.addHandler(console_handler)

    def _setup_file_handler(self):
        """配置文件日志处理器

        日志目录不可写时（只读家目录、沙箱等）只保留控制台输出
        """
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return
        log_file = self.log_dir / f"ziggurat_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8',
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(self.DETAILED_FORMAT))
        self.root_logger.addHandler(file_handler)

    def get_logger(self, name: str) -> logging.Logger:
        """获取指定名称的日志记录器

        Args:
            name: 日志记录器名称，通常使用模块名称

        Returns:
            logging.Logger: 挂在 ziggurat 根记录器下的日志记录器
        """
        if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
            return logging.getLogger(name)
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    def set_level(self, level: Union[str, int]):
        """设置日志级别

        文件处理器始终保持 DEBUG，只调整根记录器和控制台
        """
        self.root_logger.setLevel(level)
        for handler in self.root_logger.handlers:
            if not isinstance(handler, RotatingFileHandler):
                handler.setLevel(level)

    def enable_debug_mode(self):
        """启用调试模式，增加日志详细程度"""
        self.set_level(logging.DEBUG)
        for handler in self.root_logger.handlers:
            if not isinstance(handler, RotatingFileHandler):
                handler.setFormatter(logging.Formatter(self.DETAILED_FORMAT))

# 全局日志管理器实例
_logger_manager = LoggerManager()

def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷方法"""
    return _logger_manager.get_logger(name)

def set_log_level(level: Union[str, int]):
    """设置全局日志级别的便捷方法"""
    _logger_manager.set_level(level)

def enable_debug():
    """启用调试模式的便捷方法"""
    _logger_manager.enable_debug_mode()

import json
from pathlib import Path
from typing import Optional, Any, Dict
from peewee import Model, SqliteDatabase, AutoField, CharField, TextField, SQL, Proxy
from ..utils.logger import get_logger

logger = get_logger(__name__)

# 全局数据库代理，由应用入口 init_db() 或测试 fixture 初始化
db_proxy = Proxy()


class _TranslationCache(Model):
    """翻译缓存数据模型"""
    id = AutoField()
    translate_engine = CharField(max_length=20)  # 翻译引擎名称
    translate_engine_params = TextField()        # 翻译参数（JSON格式）
    original_text = TextField()                  # 原始文本
    translation = TextField()                    # 翻译结果

    class Meta:
        database = db_proxy
        constraints = [
            SQL(
                """
                UNIQUE (
                    translate_engine,
                    translate_engine_params,
                    original_text
                )
                ON CONFLICT REPLACE
                """
            )
        ]


class TranslationCache:
    """翻译缓存管理器

    以 (引擎, 参数, 原文) 为键；参数里放目标语言等影响译文的设置。
    数据库未初始化时 get 总是未命中、set 什么也不做。
    """

    def __init__(
        self,
        translate_engine: str = "",
        translate_engine_params: Optional[Dict[str, Any]] = None,
    ):
        assert len(translate_engine) <= 20, "翻译引擎名称不能超过20个字符"
        self.translate_engine = translate_engine
        self.params: Dict[str, Any] = {}
        self.replace_params(translate_engine_params)

    @staticmethod
    def _sort_dict_recursively(obj: Any) -> Any:
        """递归排序字典，确保相同内容的字典具有相同的字符串表示"""
        if isinstance(obj, dict):
            return {
                k: TranslationCache._sort_dict_recursively(obj[k])
                for k in sorted(obj.keys())
            }
        elif isinstance(obj, list):
            return [TranslationCache._sort_dict_recursively(item) for item in obj]
        return obj

    def replace_params(self, params: Optional[Dict[str, Any]] = None) -> None:
        """替换所有参数"""
        if params is None:
            params = {}
        self.params = params
        self.translate_engine_params = json.dumps(self._sort_dict_recursively(params.copy()))

    def add_params(self, key: str, value: Any) -> None:
        """添加单个参数，不可JSON序列化的值转为字符串"""
        current_params = self.params.copy()
        try:
            json.dumps(value)
            current_params[key] = value
        except (TypeError, OverflowError):
            current_params[key] = str(value)
        self.replace_params(current_params)

    @staticmethod
    def is_available() -> bool:
        return db_proxy.obj is not None

    def get(self, original_text: str) -> Optional[str]:
        """获取缓存的翻译结果"""
        if not self.is_available():
            return None
        try:
            with db_proxy.connection_context():
                cached_item = _TranslationCache.get_or_none(
                    (_TranslationCache.translate_engine == self.translate_engine) &
                    (_TranslationCache.translate_engine_params == self.translate_engine_params) &
                    (_TranslationCache.original_text == original_text)
                )
                return cached_item.translation if cached_item else None
        except Exception as e:
            # 缓存故障不影响翻译本身
            logger.debug(f"获取缓存时出错: {e}", exc_info=True)
            return None

    def set(self, original_text: str, translation: str) -> None:
        """设置翻译缓存"""
        if not self.is_available():
            return
        try:
            with db_proxy.connection_context():
                _TranslationCache.replace(
                    translate_engine=self.translate_engine,
                    translate_engine_params=self.translate_engine_params,
                    original_text=original_text,
                    translation=translation,
                ).execute()
        except Exception as e:
            logger.debug(f"设置缓存时出错: {e}", exc_info=True)


def default_cache_path() -> Path:
    return Path.home() / ".cache" / "ziggurat" / "cache.v1.db"


def init_db(db_path: Optional[Path] = None) -> bool:
    """
    初始化缓存数据库，并将其设置到全局代理 db_proxy
    Args:
        db_path: 数据库文件路径，默认 ~/.cache/ziggurat/cache.v1.db
    Returns:
        是否初始化成功；失败时翻译照常进行，只是不使用缓存
    """
    cache_db_path = Path(db_path) if db_path else default_cache_path()
    try:
        cache_db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"无法创建缓存目录 {cache_db_path.parent}: {e}")
        return False

    db = SqliteDatabase(
        str(cache_db_path),
        pragmas={
            "journal_mode": "wal",
            "busy_timeout": 1000,
        },
    )
    db_proxy.initialize(db)

    try:
        with db_proxy.connection_context():
            db_proxy.create_tables([_TranslationCache], safe=True)
        logger.debug(f"缓存数据库已初始化: {cache_db_path}")
        return True
    except Exception as e:
        logger.warning(f"初始化缓存数据库失败，将不使用缓存: {e}")
        db_proxy.initialize(None)
        return False

def close_db() -> None:
    """解除全局代理与数据库的绑定"""
    if db_proxy.obj is not None:
        if not db_proxy.is_closed():
            db_proxy.close()
        db_proxy.initialize(None)

from dataclasses import dataclass
from pathlib import Path
from threading import RLock
import json
import os
import re
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from dotenv import dotenv_values

from ..utils.exceptions import ConfigurationError, MissingAPIKeyError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

API_KEY_ENV_VAR = "ZIGGURAT_API_KEY"
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_PROVIDER = "google"
DEFAULT_LLM_MODEL = "llama-3.2-3B"
PROVIDERS = ("google", "llm")

# ISO 639 语言代码，可带地区/文字子标签，如 en、zh-CN、zh-Hant、pt-BR、fil
_LANG_CODE_RE = re.compile(r"^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*$")


class ConfigManager:
    """配置管理器(单例模式实现)
    核心职责：
    1. 管理 JSON 配置文件 {"api_key": ...}
    2. 首次运行时在默认位置创建配置
    3. 提供线程安全的配置访问
    """
    _instance = None
    _lock = RLock()  # 使用RLock以支持同一线程多次获取

    @classmethod
    def default_path(cls) -> Path:
        return Path.home() / ".config" / "ziggurat" / "config.json"

    @classmethod
    def get_instance(cls):
        """
        双重检查锁定(Double-Checked Locking)实现单例，绑定默认配置路径
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None):
        """
        初始化策略：
        1. 未指定路径：使用默认路径，不存在时创建默认配置
        2. 指定路径：文件必须存在，否则报配置错误
        """
        self._explicit = config_path is not None
        self._config_path = Path(config_path) if config_path else self.default_path()
        self._config_data: Dict[str, Any] = {}
        self._ensure_config_exists(create=not self._explicit)

    @property
    def config_path(self) -> Path:
        return self._config_path

    def _ensure_config_exists(self, create=True):
        """
        配置文件管理策略：
        1. 首次运行：创建默认配置
        2. 正常运行：加载已有配置
        """
        if not self._config_path.exists():
            if create:
                self._config_data = {
                    "api_key": "",
                    "batch_size": DEFAULT_BATCH_SIZE,
                    "max_concurrency": DEFAULT_MAX_CONCURRENCY,
                }
                try:
                    self._config_path.parent.mkdir(parents=True, exist_ok=True)
                    self._save_config()
                except OSError as e:
                    # 家目录只读时仍可仅凭命令行和环境变量运行
                    logger.warning(f"Could not create default config {self._config_path}: {e}")
            else:
                raise ConfigurationError("config", f"config file {self._config_path} not found")
        else:
            self._load_config()

    def get(self, key: str, default: Any = None) -> Any:
        return self._config_data.get(key, default)

    def get_api_key(self) -> Optional[str]:
        """获取配置文件中的API密钥，空字符串视为未设置"""
        value = self._config_data.get("api_key")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def _save_config(self):
        """保存配置到文件"""
        with self._lock:
            try:
                with open(self._config_path, 'w', encoding='utf-8') as f:
                    json.dump(self._config_data, f, indent=4, ensure_ascii=False)
            except Exception as e:
                logger.error(f"Failed to save config: {str(e)}")
                raise

    def _load_config(self):
        """从文件加载配置"""
        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError("config", f"{self._config_path} is not valid JSON: {e}")
        except OSError as e:
            raise ConfigurationError("config", f"cannot read {self._config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError("config", f"{self._config_path} must contain a JSON object")
        self._config_data = data


def load_env_file(env_file: Optional[Path] = None) -> Dict[str, Optional[str]]:
    """读取 .env 文件中的变量，不写入进程环境"""
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"
    if not env_path.is_file():
        return {}
    logger.debug(f"Reading environment file {env_path}")
    return dict(dotenv_values(env_path))


def resolve_api_key(
    cli_key: Optional[str] = None,
    config_key: Optional[str] = None,
    env_file_values: Optional[Mapping[str, Optional[str]]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    按优先级解析API密钥：
    命令行参数 > 配置文件 > .env 文件 > 环境变量
    空值视为未提供
    """
    if environ is None:
        environ = os.environ
    candidates = (
        ("--api-key", cli_key),
        ("config file", config_key),
        (".env", (env_file_values or {}).get(API_KEY_ENV_VAR)),
        ("environment", environ.get(API_KEY_ENV_VAR)),
    )
    for source, value in candidates:
        if value and value.strip():
            logger.debug(f"Using API key from {source}")
            return value.strip()
    raise MissingAPIKeyError(API_KEY_ENV_VAR)


def validate_language_code(field: str, code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip()
    if not _LANG_CODE_RE.match(code):
        raise ValidationError(field, code, f"'{code}' is not a language code such as 'fr' or 'zh-CN'")
    return code


def _positive_int(field: str, *values: Any) -> int:
    """取第一个非空值并校验为正整数"""
    for value in values:
        if value is None:
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(field, value, "must be an integer")
        if number < 1:
            raise ValidationError(field, value, "must be at least 1")
        return number
    raise ValidationError(field, None, "no value provided")


def _first(*values: Any) -> Any:
    for value in values:
        if isinstance(value, str):
            value = value.strip()
        if value:
            return value
    return None


def resolve_provider(
    provider: Optional[str],
    endpoint: Optional[str],
    model: Optional[str],
) -> Tuple[str, Optional[str], Optional[str]]:
    """
    校验翻译服务配置：
    1. provider 只能是 google 或 llm
    2. llm 必须提供 http(s) 服务地址，模型缺省为 llama-3.2-3B
    """
    provider = str(provider or DEFAULT_PROVIDER).lower()
    if provider not in PROVIDERS:
        raise ValidationError("provider", provider, f"must be one of {', '.join(PROVIDERS)}")
    if provider == "google":
        return provider, None, None
    if not endpoint:
        raise ConfigurationError("endpoint", "the llm provider needs --endpoint or \"endpoint\" in the config file")
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("endpoint", endpoint, "must be an http(s) URL")
    return provider, endpoint, model or DEFAULT_LLM_MODEL


@dataclass
class Settings:
    """一次翻译任务的有效配置"""
    api_key: str
    input_path: Path
    output_path: Path
    target_language: str
    verbose: bool = False
    source_language: Optional[str] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    ignore_cache: bool = False
    provider: str = DEFAULT_PROVIDER
    endpoint: Optional[str] = None
    model: Optional[str] = None

    def __repr__(self):
        # 避免在日志和回溯中泄露密钥
        return (
            f"Settings(input_path={self.input_path!r}, output_path={self.output_path!r}, "
            f"target_language={self.target_language!r}, source_language={self.source_language!r}, "
            f"batch_size={self.batch_size}, max_concurrency={self.max_concurrency}, "
            f"verbose={self.verbose}, ignore_cache={self.ignore_cache}, "
            f"provider={self.provider!r}, endpoint={self.endpoint!r}, model={self.model!r})"
        )


def resolve_settings(args, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    根据命令行参数构建 Settings：
    1. 加载配置文件（--config 或默认位置）
    2. 读取 .env
    3. 按优先级解析密钥、翻译服务和数值选项（命令行 > 配置文件 > 默认值）
    """
    if getattr(args, "config", None):
        config_manager = ConfigManager(Path(args.config))
    else:
        config_manager = ConfigManager.get_instance()
    logger.debug(f"Config file: {config_manager.config_path}")

    env_values = load_env_file(getattr(args, "env_file", None))
    api_key = resolve_api_key(
        cli_key=getattr(args, "api_key", None),
        config_key=config_manager.get_api_key(),
        env_file_values=env_values,
        environ=environ,
    )

    provider, endpoint, model = resolve_provider(
        _first(getattr(args, "provider", None), config_manager.get("provider")),
        _first(getattr(args, "endpoint", None), config_manager.get("endpoint")),
        _first(getattr(args, "model", None), config_manager.get("model")),
    )
    target = validate_language_code("to", args.to)
    source = validate_language_code("from", getattr(args, "source", None))

    return Settings(
        api_key=api_key,
        input_path=Path(args.input),
        output_path=Path(args.output),
        target_language=target,
        verbose=bool(getattr(args, "verbose", False)),
        source_language=source,
        batch_size=_positive_int(
            "batch_size", getattr(args, "batch_size", None),
            config_manager.get("batch_size"), DEFAULT_BATCH_SIZE,
        ),
        max_concurrency=_positive_int(
            "max_concurrency", getattr(args, "threads", None),
            config_manager.get("max_concurrency"), DEFAULT_MAX_CONCURRENCY,
        ),
        ignore_cache=bool(getattr(args, "ignore_cache", False)),
        provider=provider,
        endpoint=endpoint,
        model=model,
    )

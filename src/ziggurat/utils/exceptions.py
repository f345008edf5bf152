"""Ziggurat异常定义模块

按照分层架构设计，定义了系统中所有自定义异常类，包括:
1. 文档处理异常
2. 翻译服务异常
3. 业务逻辑异常
"""
from typing import Any, Optional
from datetime import datetime

class ZigguratError(Exception):
    """所有自定义异常的基类"""
    def __init__(self, message: str, is_retryable: bool = False):
        super().__init__(message)
        self.is_retryable = is_retryable
        self.timestamp = datetime.now()

# =============== 文档处理异常 ===============
class DocumentError(ZigguratError):
    """文档处理相关异常的基类"""
    pass

class FileReadError(DocumentError):
    """文件读取异常"""
    def __init__(self, file_path: str, reason: str):
        super().__init__(f"Failed to read file {file_path}: {reason}", is_retryable=False)
        self.file_path = file_path

class UnsupportedFormatError(DocumentError):
    """不支持的输入或输出格式"""
    def __init__(self, file_path: str, details: str):
        super().__init__(f"Unsupported format for {file_path}: {details}", is_retryable=False)
        self.file_path = file_path

class PDFFormatError(DocumentError):
    """PDF格式异常"""
    def __init__(self, details: str):
        super().__init__(f"Invalid PDF format: {details}", is_retryable=False)

class EPUBFormatError(DocumentError):
    """EPUB格式异常"""
    def __init__(self, details: str):
        super().__init__(f"Invalid EPUB format: {details}", is_retryable=False)

class OutputWriteError(DocumentError):
    """输出文件写入异常"""
    def __init__(self, file_path: str, reason: str):
        super().__init__(f"Failed to write output {file_path}: {reason}", is_retryable=False)
        self.file_path = file_path

# =============== 翻译服务异常 ===============
class TranslationError(ZigguratError):
    """翻译服务相关异常的基类"""
    pass

class APICallError(TranslationError):
    """API调用异常"""
    def __init__(self, service_name: str, error_code: str, message: str):
        super().__init__(
            f"{service_name} API error ({error_code}): {message}",
            is_retryable=True
        )
        self.service_name = service_name
        self.error_code = error_code

class AuthenticationError(APICallError):
    """API密钥无效或权限不足"""
    def __init__(self, service_name: str, error_code: str, message: str):
        super().__init__(service_name, error_code, message)
        self.is_retryable = False

class RateLimitError(TranslationError):
    """服务限流或配额耗尽"""
    def __init__(self, service_name: str, retry_after: int = 60):
        super().__init__(
            f"{service_name}: Rate limit exceeded. Retry after {retry_after}s",
            is_retryable=True
        )
        self.service_name = service_name
        self.retry_after = retry_after

class NetworkError(TranslationError):
    """网络连接异常"""
    def __init__(self, host: str, reason: str, port: Optional[int] = None):
        message = f"Network error connecting to {host}"
        if port:
            message += f":{port}"
        message += f": {reason}"
        super().__init__(message, is_retryable=True)
        self.host = host
        self.port = port

# =============== 业务逻辑异常 ===============
class BusinessError(ZigguratError):
    """业务逻辑相关异常的基类"""
    pass

class ConfigurationError(BusinessError):
    """配置错误"""
    def __init__(self, config_key: str, reason: str):
        super().__init__(f"Configuration error for {config_key}: {reason}")
        self.config_key = config_key

class MissingAPIKeyError(ConfigurationError):
    """所有来源都没有提供API密钥"""
    def __init__(self, env_var: str):
        super().__init__(
            "api_key",
            f"no API key found; pass --api-key, set \"api_key\" in the config file, "
            f"or define {env_var} in .env or the environment"
        )
        self.env_var = env_var

class ValidationError(BusinessError):
    """参数验证异常"""
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(f"Validation failed for {field}: {reason}")
        self.field = field
        self.value = value

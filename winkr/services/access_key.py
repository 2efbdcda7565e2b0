"""
@description 访问密钥生成器
@responsibility 生成 128 位熵、十六进制编码的照片访问密钥
"""

import secrets

from loguru import logger

from winkr.core.errors import KeygenFailedError

ACCESS_KEY_BYTES = 16


def generate_access_key() -> str:
    """
    生成访问密钥（32 位十六进制字符，URL 安全）

    Raises:
        KeygenFailedError: 系统随机源不可用
    """
    try:
        return secrets.token_hex(ACCESS_KEY_BYTES)
    except (OSError, NotImplementedError) as e:
        logger.error(f"系统随机源不可用: {e}")
        raise KeygenFailedError() from e

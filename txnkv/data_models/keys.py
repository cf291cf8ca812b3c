"""
记录标识编解码
记录标识 (namespace, set, digest) 与规范字符串 namespace::set::HEXDIGEST 之间的可逆转换。
规范字符串用作事务记录中前像映射的键，也用于派生锁记录的键。
"""

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any

from .errors import KeyFormatError


DELIMITER = "::"
DIGEST_SIZE = 20

# 用户键类型标签，参与摘要计算，保证 1 与 "1" 映射到不同记录
_KEY_TYPE_INT = b"\x01"
_KEY_TYPE_STR = b"\x03"
_KEY_TYPE_BYTES = b"\x04"


def bytes_to_hex(data: bytes) -> str:
    """字节数组转定宽十六进制字符串（每字节两个大写字符）"""
    return bytes(data).hex().upper()


def hex_to_bytes(text: str) -> bytes:
    """十六进制字符串转字节数组"""
    if len(text) % 2 != 0:
        raise ValueError("Input string must contain an even number of characters")
    return bytes.fromhex(text)


def compute_digest(set_name: str, user_key: Any) -> bytes:
    """计算记录摘要：SHA-1(set || 类型标签 || 键字节)，固定20字节"""
    if isinstance(user_key, bool):
        raise TypeError("Boolean user keys are not supported")
    if isinstance(user_key, int):
        key_bytes = _KEY_TYPE_INT + struct.pack(">q", user_key)
    elif isinstance(user_key, str):
        key_bytes = _KEY_TYPE_STR + user_key.encode("utf-8")
    elif isinstance(user_key, (bytes, bytearray)):
        key_bytes = _KEY_TYPE_BYTES + bytes(user_key)
    else:
        raise TypeError(f"Unsupported user key type: {type(user_key).__name__}")

    return hashlib.sha1(set_name.encode("utf-8") + key_bytes).digest()


@dataclass(frozen=True)
class RecordIdentity:
    """记录标识

    相等性与哈希只基于 (namespace, set_name, digest)；user_key 仅用于诊断，
    从字符串解码得到的标识中为 None。
    """
    namespace: str
    set_name: str
    digest: bytes
    user_key: Any = field(default=None, compare=False)

    def __post_init__(self):
        for part in (self.namespace, self.set_name):
            if DELIMITER in part:
                raise KeyFormatError(part, f"must not contain {DELIMITER!r}")
        if not isinstance(self.digest, bytes):
            object.__setattr__(self, "digest", bytes(self.digest))

    @classmethod
    def of(cls, namespace: str, set_name: str, user_key: Any) -> "RecordIdentity":
        """根据用户键构造标识（使用默认摘要算法）"""
        return cls(namespace, set_name, compute_digest(set_name, user_key), user_key)

    def __str__(self) -> str:
        return encode(self)


def encode(identity: RecordIdentity) -> str:
    """记录标识 -> 规范字符串"""
    return DELIMITER.join((identity.namespace, identity.set_name, bytes_to_hex(identity.digest)))


def decode(raw: str) -> RecordIdentity:
    """规范字符串 -> 记录标识"""
    parts = raw.split(DELIMITER)
    if len(parts) < 3:
        raise KeyFormatError(raw)

    # namespace和set不含分隔符，第二段之后都属于摘要
    namespace, set_name = parts[0], parts[1]
    try:
        digest = hex_to_bytes("".join(parts[2:]))
    except ValueError as exc:
        raise KeyFormatError(raw, "has a malformed digest segment") from exc

    return RecordIdentity(namespace, set_name, digest)

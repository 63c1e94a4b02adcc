"""バケット割り当て用の FNV-1a ハッシュ"""

from __future__ import annotations

import struct

FNV_OFFSET_BASIS_64 = 0xCBF29CE484222325
FNV_PRIME_64 = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

ROLLOUT_SALT = "rollout"
VARIANT_SALT = "variant"


def fnv1a_64(data: bytes) -> int:
    """64bit FNV-1a ハッシュを符号なし整数で返す。"""
    h = FNV_OFFSET_BASIS_64
    for b in data:
        h ^= b
        h = (h * FNV_PRIME_64) & _MASK_64
    return h


def normalized_hash(key: str, salt: str) -> float:
    """key + salt を [0, 1) の 100 段階の値に写像する。

    全 SDK で同一のバケットになるよう、精度は 1% 刻みで固定。

    Raises:
        ValueError: key または salt が None の場合
    """
    if key is None:
        raise ValueError("key cannot be None")
    if salt is None:
        raise ValueError("salt cannot be None")
    h = fnv1a_64((key + salt).encode("utf-8"))
    return (h % 100) / 100.0


def rollout_hash(key: str) -> float:
    """ロールアウト判定用のハッシュ。"""
    return normalized_hash(key, ROLLOUT_SALT)


def variant_hash(key: str) -> float:
    """バリアント選択用のハッシュ。"""
    return normalized_hash(key, VARIANT_SALT)


def to_float32(value: float) -> float:
    """単精度に丸めた値を返す。分割・割合の比較は全 SDK で単精度に揃える。"""
    return struct.unpack("f", struct.pack("f", value))[0]

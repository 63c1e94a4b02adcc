"""FNV-1a バケットハッシュのユニットテスト"""

import pytest
from k1s0_featureflag.hashing import fnv1a_64, normalized_hash, rollout_hash, variant_hash

# 他 SDK と共有する参照値
REFERENCE_VECTORS = [
    ("user123", "rollout", 0.67),
    ("user123", "variant", 0.55),
    ("abc", "rollout", 0.56),
    ("abc", "variant", 0.72),
    ("test-user", "rollout", 0.88),
    ("user-1", "variant", 0.81),
    ("", "rollout", 0.90),
    ("a", "", 0.96),
    ("", "", 0.37),
]


def test_fnv1a_known_values() -> None:
    """FNV-1a 64 の既知の値と一致すること。"""
    assert fnv1a_64(b"") == 0xCBF29CE484222325
    assert fnv1a_64(b"a") == 0xAF63DC4C8601EC8C


def test_fnv1a_high_bit_is_unsigned() -> None:
    """上位ビットが立つハッシュも符号なしで扱われること。"""
    h = fnv1a_64(b"user123rollout")
    assert h == 0xCEA6AE4A63770D83
    assert h % 100 == 67


@pytest.mark.parametrize(("key", "salt", "expected"), REFERENCE_VECTORS)
def test_reference_vectors(key: str, salt: str, expected: float) -> None:
    """参照テーブルと完全に一致すること。"""
    assert normalized_hash(key, salt) == expected


def test_rollout_and_variant_wrappers() -> None:
    assert rollout_hash("user123") == normalized_hash("user123", "rollout")
    assert variant_hash("user123") == normalized_hash("user123", "variant")


def test_deterministic() -> None:
    """同じ入力は常に同じ値を返すこと。"""
    first = normalized_hash("same-user", "rollout")
    assert all(normalized_hash("same-user", "rollout") == first for _ in range(10))


def test_range_has_100_buckets() -> None:
    """値は [0, 1) の 0.01 刻みに収まること。"""
    allowed = {i / 100.0 for i in range(100)}
    for i in range(500):
        value = normalized_hash(f"user-{i}", "rollout")
        assert 0.0 <= value < 1.0
        assert value in allowed


def test_utf8_input() -> None:
    """非 ASCII の識別子も扱えること。"""
    value = normalized_hash("ユーザー", "rollout")
    assert 0.0 <= value < 1.0
    assert value == normalized_hash("ユーザー", "rollout")


def test_none_key_raises() -> None:
    with pytest.raises(ValueError):
        normalized_hash(None, "rollout")  # type: ignore[arg-type]


def test_none_salt_raises() -> None:
    with pytest.raises(ValueError):
        normalized_hash("user", None)  # type: ignore[arg-type]

"""パーセンテージ分割用の決定的ハッシュ"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence


def get_hashed_percentage_for_object_ids(
    object_ids: Sequence[str], iterations: int = 1
) -> float:
    """ID 列から [0, 100) の決定的な値を返す。

    ID 列を iterations 回繰り返してカンマ連結し、MD5 ダイジェストを
    9999 で割った余りを 0-100 に正規化する。結果がちょうど 100 になる
    場合は繰り返し回数を増やして再計算する。

    Args:
        object_ids: ハッシュ対象の ID 列（セグメントキーとアイデンティティキー等）
        iterations: ID 列の繰り返し回数

    Returns:
        0 以上 100 未満の浮動小数点数
    """
    to_hash = ",".join(list(object_ids) * iterations)
    hash_value = int(hashlib.md5(to_hash.encode("utf-8"), usedforsecurity=False).hexdigest(), 16)
    value = ((hash_value % 9999) / 9998) * 100
    if value == 100:
        return get_hashed_percentage_for_object_ids(object_ids, iterations + 1)
    return value

"""校正対象ファイルの読み書き。

- バイナリらしいものは除外(ヒューリスティック)。
- 読み込めたエンコーディングを覚えておき、書き戻しに使う。
"""
from __future__ import annotations
from pathlib import Path
from typing import Tuple

BINARY_BYTES = set(range(0, 9)) | {11, 12} | set(range(14, 32))
ENCODING_CANDIDATES = ("utf-8", "utf-8-sig", "utf-16", "cp932", "shift_jis")

def is_probably_text(data: bytes, threshold: float = 0.30) -> bool:
    if not data:
        return True
    non_text = sum(b in BINARY_BYTES for b in data)
    ratio = non_text / len(data)
    return ratio < threshold

def read_text(path: Path, encoding_candidates=ENCODING_CANDIDATES) -> Tuple[str, str] | None:
    """(本文, エンコーディング) を返す。読めなければ None。"""
    try:
        raw = path.read_bytes()
    except OSError:
        return None
    if not is_probably_text(raw):
        return None
    for enc in encoding_candidates:
        try:
            return raw.decode(enc), enc
        except UnicodeDecodeError:
            continue
    return None

def write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    # 改行コードはそのまま保つ
    with path.open("w", encoding=encoding, newline="") as f:
        f.write(text)

__all__ = ["read_text", "write_text", "is_probably_text"]

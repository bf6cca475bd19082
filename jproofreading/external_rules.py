"""YAML / JSON から ProofreadingRule をロードするユーティリティ。
フォーマット例:

YAML:
---
- pattern: "御願い"
  replacement: "お願い"
  description: "'御願い' -> 'お願い'"
- pattern: "(\\d+)ケ月"
  replacement: "\\1か月"
  description: "'ケ月' -> 'か月'"
  expand: true

JSON: 上記と同じ構造の配列。
expand: true の場合のみ replacement 中の \\1 などをグループ参照として展開する。
"""
from __future__ import annotations
from pathlib import Path
import json
import re
from typing import List

import yaml

from .rules import Literal, ProofreadingRule, Transform

_ENCODINGS = ("utf-8", "utf-8-sig", "utf-16", "utf-16-le", "utf-16-be", "cp932")


def _decode(raw: bytes) -> str:
    for enc in _ENCODINGS:
        try:
            text = raw.decode(enc)
        except UnicodeDecodeError:
            continue
        return text.lstrip('\ufeff')
    raise UnicodeDecodeError("unknown", raw, 0, len(raw), "Unable to decode rule file with tried encodings")


def _expander(template: str):
    return lambda m: m.expand(template)


def load_rule_file(path: str) -> List[ProofreadingRule]:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(path)
    # PowerShell Set-Content デフォルトの UTF-16 なども読めるように複数候補を試す
    text = _decode(p.read_bytes())
    if p.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("ルールファイルは配列である必要があります")
    rules: List[ProofreadingRule] = []
    for n, item in enumerate(data, 1):
        if not isinstance(item, dict):
            continue
        pat = item.get("pattern")
        repl = str(item.get("replacement") or "")
        desc = item.get("description") or item.get("message") or f"{p.name} のルール {n}"
        try:
            r = re.compile(pat)
        except (re.error, TypeError) as e:
            raise ValueError(f"Invalid regex: {pat}: {e}")
        replacement = Transform(_expander(repl)) if item.get("expand") else Literal(repl)
        rules.append(ProofreadingRule(pattern=r, replacement=replacement, description=desc, rule_id=item.get("id")))
    return rules

__all__ = ["load_rule_file"]

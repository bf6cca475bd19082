"""文体（です・ます / である）の判定。

文体の一貫性は文書全体の性質なので、選択範囲の校正でも文書全体を数える。
"""
from __future__ import annotations
from dataclasses import dataclass
import re

FORMAL = "formal"
PLAIN = "plain"
MIXED = "mixed"
UNKNOWN = "unknown"

_PLAIN_RE = re.compile(r"である。|だ。")
_FORMAL_RE = re.compile(r"です。|ます。")


@dataclass(frozen=True)
class StyleAnalysis:
    style: str
    plain_endings: int
    formal_endings: int


def analyze_style(text: str) -> StyleAnalysis:
    plain = len(_PLAIN_RE.findall(text))
    formal = len(_FORMAL_RE.findall(text))
    if plain > 0 and formal > 0:
        style = MIXED
    elif plain > 0:
        style = PLAIN
    elif formal > 0:
        style = FORMAL
    else:
        style = UNKNOWN
    return StyleAnalysis(style=style, plain_endings=plain, formal_endings=formal)


def style_label(style: str) -> str:
    if style == PLAIN:
        return "「である」体"
    if style == FORMAL:
        return "「です・ます」体"
    return "既存の文体"


def style_suggestion(analysis: StyleAnalysis) -> str:
    if analysis.style == MIXED:
        return (
            f"文体が混在しています（「である」体: {analysis.plain_endings}箇所、"
            f"「です・ます」体: {analysis.formal_endings}箇所）。一貫した文体の使用を推奨します。"
        )
    if analysis.style == FORMAL:
        return f"現在「です・ます」体で統一されています（{analysis.formal_endings}箇所）。"
    if analysis.style == PLAIN:
        return f"現在「である」体で統一されています（{analysis.plain_endings}箇所）。"
    return "明確な文体が検出されませんでした。"


__all__ = [
    "StyleAnalysis",
    "analyze_style",
    "style_label",
    "style_suggestion",
    "FORMAL",
    "PLAIN",
    "MIXED",
    "UNKNOWN",
]

"""句読点・文末表現を機械的に整える校正ルール定義モジュール。

ルールは固定順のリストで、前のルールの出力に次のルールを適用する（単一パス）。
置換は `Literal`（文字列そのまま）か `Transform`（マッチから文字列を作る純関数）のどちらか。
"""
from __future__ import annotations
from dataclasses import dataclass
import re
from typing import Callable, Iterable, List, Pattern, Union


@dataclass(frozen=True)
class Literal:
    text: str

    def __call__(self, m: re.Match) -> str:
        # re.sub の文字列置換はバックスラッシュを解釈するため関数で渡す
        return self.text


@dataclass(frozen=True)
class Transform:
    func: Callable[[re.Match], str]

    def __call__(self, m: re.Match) -> str:
        return self.func(m)


Replacement = Union[Literal, Transform]


@dataclass(frozen=True)
class ProofreadingRule:
    pattern: Pattern[str]
    replacement: Replacement
    description: str
    rule_id: str | None = None

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


@dataclass
class FiredRule:
    rule: ProofreadingRule
    original: str
    corrected: str


@dataclass
class RuleResult:
    text: str
    fired: List[FiredRule]


def _period_after(m: re.Match) -> str:
    # 改行はそのまま付け直す（末尾なら空文字）
    return m.group(1) + "。" + m.group(2)


def default_rules() -> List[ProofreadingRule]:
    return [
        ProofreadingRule(
            pattern=re.compile(r"([！？])([^！？\s])"),
            replacement=Transform(lambda m: m.group(1) + "　" + m.group(2)),
            description="感嘆符・疑問符の後には全角スペースを入れる",
            rule_id="SPACE_AFTER_EXCLAMATION",
        ),
        ProofreadingRule(
            pattern=re.compile(r"([。、．，])[^\S\r\n]+(?=[^\r\n])"),
            replacement=Transform(lambda m: m.group(1)),
            description="句読点の後の空白を削除",
            rule_id="PUNCT_TRAILING_SPACE",
        ),
        ProofreadingRule(
            pattern=re.compile(r"(です)(\r?\n|\Z)"),
            replacement=Transform(_period_after),
            description="文末の「です」の後には句点が必要",
            rule_id="DESU_PERIOD",
        ),
        ProofreadingRule(
            pattern=re.compile(r"(ます)(\r?\n|\Z)"),
            replacement=Transform(_period_after),
            description="文末の「ます」の後には句点が必要",
            rule_id="MASU_PERIOD",
        ),
    ]


def apply_rules(rules: Iterable[ProofreadingRule], text: str) -> RuleResult:
    """ルールを順に1回ずつ適用し、本文を変えたルールを記録する。"""
    current = text
    fired: List[FiredRule] = []
    for rule in rules:
        before = current
        current = rule.apply(current)
        if current != before:
            fired.append(FiredRule(rule=rule, original=before, corrected=current))
    return RuleResult(text=current, fired=fired)


_RULES: List[ProofreadingRule] | None = None

def add_rules(rules: Iterable[ProofreadingRule]):
    """外部から読み込んだルールを既定ルールの後ろに追加。"""
    global _RULES
    if _RULES is None:
        _RULES = default_rules()
    _RULES.extend(rules)

def get_rules() -> List[ProofreadingRule]:
    global _RULES
    if _RULES is None:
        _RULES = default_rules()
    return _RULES

def reset_rules():
    global _RULES
    _RULES = None

__all__ = [
    "Literal",
    "Transform",
    "ProofreadingRule",
    "FiredRule",
    "RuleResult",
    "default_rules",
    "apply_rules",
    "add_rules",
    "get_rules",
    "reset_rules",
]

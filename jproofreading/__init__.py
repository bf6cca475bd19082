"""jproofreading
日本語文章の校正支援ライブラリ。

主な提供機能:
- 句読点・文末表現を整えるルールベース校正（外部 YAML/JSON ルールで拡張可能）
- 文体（です・ます / である）の混在検出
- OpenAI による文章全体の校正（選択範囲は前後の文脈付きで送信）
- 差分表示と適用確認を行う校正パイプライン、CLI インターフェース
"""
from .rules import apply_rules, default_rules, get_rules, add_rules, ProofreadingRule, Literal, Transform
from .style import analyze_style, style_suggestion, StyleAnalysis
from .ai_client import AICorrectionClient, AIResult, SelectionContext, create_client
from .pipeline import Proofreader, CorrectionRecord, CorrectionSession

__all__ = [
    "apply_rules",
    "default_rules",
    "get_rules",
    "add_rules",
    "ProofreadingRule",
    "Literal",
    "Transform",
    "analyze_style",
    "style_suggestion",
    "StyleAnalysis",
    "AICorrectionClient",
    "AIResult",
    "SelectionContext",
    "create_client",
    "Proofreader",
    "CorrectionRecord",
    "CorrectionSession",
]

__version__ = "0.1.0"

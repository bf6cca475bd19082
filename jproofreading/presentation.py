"""校正結果の提示: 差分表示・修正理由一覧・適用確認。"""
from __future__ import annotations
import difflib
from typing import TYPE_CHECKING, List, Sequence

from .host import EditorHost, TextRange

if TYPE_CHECKING:
    from .pipeline import CorrectionRecord, CorrectionSession

APPLY = "適用"
SHOW = "表示"
CANCEL = "キャンセル"


def annotate(corrected: str, corrections: Sequence["CorrectionRecord"]) -> str:
    """修正後テキストの末尾に修正理由をコメントとして付ける。"""
    out = corrected
    for n, corr in enumerate(corrections, 1):
        out += f"\n\n// 修正理由 {n}: {corr.description}"
    return out


def reasons_list(corrections: Sequence["CorrectionRecord"]) -> str:
    return "\n".join(f"{n}. {corr.description}" for n, corr in enumerate(corrections, 1))


def render_diff(original: str, modified: str, fromfile: str = "原文.md", tofile: str = "校正後.md") -> str:
    lines: List[str] = list(difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=fromfile,
        tofile=tofile,
    ))
    # 末尾改行のない行でも差分が崩れないように
    return "".join(l if l.endswith("\n") else l + "\n" for l in lines)


class CorrectionPresenter:
    def __init__(self, host: EditorHost, auto_show_reasons: bool = False):
        self.host = host
        self.auto_show_reasons = auto_show_reasons

    async def present(self, session: "CorrectionSession") -> bool:
        """差分を開き、確認後に編集を適用する。適用したら True。"""
        corrections = session.corrections
        await self.host.open_diff(session.original_text, annotate(session.target_text, corrections), "校正結果")

        reasons = reasons_list(corrections)
        if self.auto_show_reasons:
            await self.host.show_info(reasons)
        elif await self.host.show_info("修正理由一覧を表示しますか？", SHOW, CANCEL) == SHOW:
            await self.host.show_info(reasons)

        choice = await self.host.show_info("校正結果を適用しますか？", APPLY, CANCEL)
        session.token.raise_if_cancelled()
        if choice != APPLY:
            return False
        rng = session.selection or TextRange(0, len(session.original_text))
        session.editor.replace(rng, session.target_text)
        return True


__all__ = ["CorrectionPresenter", "annotate", "reasons_list", "render_diff"]

"""OpenAI Chat Completions による AI 校正。

- 応答は {"corrected": ..., "reason": ...} 形式の JSON を期待する。
- 選択範囲の校正では前後の文脈ごと送り、校正対象をセンチネル記号で囲む。
- 解析失敗・通信失敗は None を返す（呼び出し側はルールベースの結果のみで続行）。
- キャンセルは ProofreadingCancelled として呼び出し側へ伝える。
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, DefaultAsyncHttpxClient

from .cancellation import CancellationToken, ProofreadingCancelled
from .config import Settings
from .style import StyleAnalysis, style_label

logger = logging.getLogger(__name__)

START_MARKER = "【ここから校正対象】"
END_MARKER = "【ここまで校正対象】"
DEFAULT_REASON = "AI による改善提案"

_SPAN_RE = re.compile(re.escape(START_MARKER) + r"([\s\S]*?)" + re.escape(END_MARKER))
_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$")


@dataclass(frozen=True)
class SelectionContext:
    before: str
    after: str


@dataclass(frozen=True)
class AIResult:
    corrected_text: str
    rationale: str


def build_system_prompt(style: Optional[StyleAnalysis] = None, has_selection: bool = False) -> str:
    label = style_label(style.style) if style is not None else style_label("")
    lines = []
    if has_selection:
        lines.append(
            f"{START_MARKER}と{END_MARKER}で囲まれた選択範囲のみを校正し、前後の文脈を考慮してください。"
            "前後の文章は文脈として参照するだけで、修正しないでください。"
        )
    lines += [
        "日本語の文章を校正し、以下のJSON形式で返してください：",
        "{",
        '  "corrected": "修正後の文章",',
        '  "reason": "修正理由の説明"',
        "}",
        "",
        "以下の点を考慮してください：",
        "1. 誤字脱字の修正",
        "2. 不適切な敬語の修正",
        "3. 冗長な表現の改善",
        "4. わかりづらい表現の明確化",
        f"5. 文体の統一（{label}を維持）",
        "※ 文末表現は既存の文体を維持してください",
    ]
    return "\n".join(lines)


def build_user_message(target: str, context: Optional[SelectionContext] = None) -> str:
    if context is None:
        return target
    return f"{context.before}{START_MARKER}{target}{END_MARKER}{context.after}"


def _strip_fence(raw: str) -> str:
    m = _FENCE_RE.match(raw.strip())
    return m.group(1) if m else raw.strip()


def _extract_span(text: str) -> Optional[str]:
    m = _SPAN_RE.search(text)
    return m.group(1) if m else None


def parse_response(raw: str, has_selection: bool = False) -> Optional[AIResult]:
    """モデル応答から修正後テキストと理由を取り出す。失敗時は None。"""
    body = _strip_fence(raw or "")
    data: Dict[str, Any] | None = None
    try:
        parsed = json.loads(body)
        if isinstance(parsed, dict):
            data = parsed
    except ValueError:
        data = None

    reason = DEFAULT_REASON
    if data is not None and isinstance(data.get("reason"), str) and data["reason"].strip():
        reason = data["reason"]

    if has_selection:
        # 文脈ごと返してくるモデルに備え、まずセンチネル間を取り出す
        span = None
        if data is not None and isinstance(data.get("corrected"), str):
            span = _extract_span(data["corrected"])
        if span is None:
            span = _extract_span(body)
        if span is not None:
            return AIResult(corrected_text=span, rationale=reason)

    if data is None:
        logger.warning("AI応答の解析に失敗しました（不正なJSON形式）: %s", body[:200])
        return None
    corrected = data.get("corrected")
    if not isinstance(corrected, str) or not corrected:
        logger.warning("AI応答に corrected がありません: %s", body[:200])
        return None
    return AIResult(corrected_text=corrected, rationale=reason)


class AICorrectionClient:
    def __init__(self, client: AsyncOpenAI, model: str):
        self._client = client
        self.model = model

    def build_messages(
        self,
        target: str,
        context: Optional[SelectionContext] = None,
        style: Optional[StyleAnalysis] = None,
    ) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": build_system_prompt(style, has_selection=context is not None)},
            {"role": "user", "content": build_user_message(target, context)},
        ]

    async def _request(self, messages: List[Dict[str, str]]) -> str:
        resp = await self._client.chat.completions.create(model=self.model, messages=messages)
        if not resp.choices:
            return "{}"
        return (resp.choices[0].message.content or "").strip() or "{}"

    async def correct(
        self,
        target: str,
        context: Optional[SelectionContext] = None,
        style: Optional[StyleAnalysis] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[AIResult]:
        token = token or CancellationToken.none()
        token.raise_if_cancelled()
        messages = self.build_messages(target, context, style)
        logger.debug("AI校正リクエスト: model=%s, len=%d, selection=%s", self.model, len(target), context is not None)

        request = asyncio.ensure_future(self._request(messages))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not request.done():
            request.cancel()
            await asyncio.gather(request, return_exceptions=True)
            raise ProofreadingCancelled("校正がキャンセルされました")

        try:
            raw = request.result()
        except Exception as e:
            logger.error("AI校正エラー: %s", e, exc_info=True)
            return None
        token.raise_if_cancelled()
        logger.debug("AI応答: %s", raw[:200])
        return parse_response(raw, has_selection=context is not None)


def create_client(settings: Settings) -> Optional[AICorrectionClient]:
    if not settings.api_key:
        return None
    kwargs: Dict[str, Any] = {"api_key": settings.api_key}
    if settings.proxy_url:
        kwargs["http_client"] = DefaultAsyncHttpxClient(proxy=settings.proxy_url)
    return AICorrectionClient(AsyncOpenAI(**kwargs), model=settings.model)


__all__ = [
    "AICorrectionClient",
    "AIResult",
    "SelectionContext",
    "build_system_prompt",
    "build_user_message",
    "parse_response",
    "create_client",
    "START_MARKER",
    "END_MARKER",
]

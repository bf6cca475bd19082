"""校正パイプライン: ルール適用 → 文体判定 → AI校正 → 統合 → 結果提示。

- 同時に走る校正は1つだけ。実行中に再度呼ぶと実行中の校正を中止する（トグル）。
- 実行状態は Proofreader が持つセッションだけで管理し、開始と終了は必ず対になる。
- AI 校正は常にルール適用後のテキストを対象にする。
"""
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import os
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from .ai_client import AICorrectionClient, SelectionContext, create_client
from .cancellation import CancellationToken, CancellationTokenSource, ProofreadingCancelled
from .config import API_KEY, ConfigStore, Settings, affects_client
from .host import EditorHost, Progress, TextEditor, TextRange
from .presentation import CorrectionPresenter
from .rules import ProofreadingRule, apply_rules, get_rules
from .style import MIXED, StyleAnalysis, analyze_style, style_suggestion

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"

SET_KEY = "設定する"
CANCEL = "キャンセル"


@dataclass
class CorrectionRecord:
    original: str
    corrected: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "corrected": self.corrected,
            "description": self.description,
        }


@dataclass
class CorrectionSession:
    editor: TextEditor
    original_text: str
    target_text: str
    selection: Optional[TextRange] = None
    context: Optional[SelectionContext] = None
    corrections: List[CorrectionRecord] = field(default_factory=list)
    style: Optional[StyleAnalysis] = None
    token_source: CancellationTokenSource = field(default_factory=CancellationTokenSource)
    status: str = RUNNING
    applied: bool = False

    @property
    def token(self) -> CancellationToken:
        return self.token_source.token

    def to_dict(self) -> Dict[str, Any]:
        style = None
        if self.style is not None:
            style = {
                "style": self.style.style,
                "plainEndings": self.style.plain_endings,
                "formalEndings": self.style.formal_endings,
            }
        return {
            "status": self.status,
            "applied": self.applied,
            "selection": [self.selection.start, self.selection.end] if self.selection else None,
            "style": style,
            "corrections": [c.to_dict() for c in self.corrections],
            "original": self.original_text,
            "corrected": self.target_text,
        }


ClientFactory = Callable[[Settings], Optional[AICorrectionClient]]


class Proofreader:
    def __init__(
        self,
        host: EditorHost,
        store: ConfigStore,
        rules: Sequence[ProofreadingRule] | None = None,
        client_factory: ClientFactory = create_client,
        presenter: CorrectionPresenter | None = None,
        environ: Mapping[str, str] | None = None,
        ai_enabled: bool = True,
    ):
        self.host = host
        self.store = store
        self.rules = list(rules) if rules is not None else None
        self.client_factory = client_factory
        self.presenter = presenter or CorrectionPresenter(host)
        self.environ = os.environ if environ is None else environ
        self.ai_enabled = ai_enabled
        self._session: CorrectionSession | None = None
        self.client = self._build_client()
        self._unwatch = store.watch(self._on_config_changed)
        host.set_status(False)

    # --- 状態 ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._session is not None

    @property
    def active_session(self) -> CorrectionSession | None:
        return self._session

    def try_cancel(self) -> bool:
        """実行中の校正を中止する。中止対象があれば True。"""
        session = self._session
        if session is None:
            return False
        logger.info("校正を中止します")
        session.token_source.cancel()
        return True

    def dispose(self) -> None:
        self._unwatch()
        self.try_cancel()

    def _build_client(self) -> AICorrectionClient | None:
        if not self.ai_enabled:
            return None
        return self.client_factory(Settings.from_store(self.store, self.environ))

    def _on_config_changed(self, key: str) -> None:
        if affects_client(key):
            self.client = self._build_client()

    @contextmanager
    def _running(self, session: CorrectionSession) -> Iterator[CorrectionSession]:
        if self._session is not None:
            raise RuntimeError("校正はすでに実行中です")
        self._session = session
        self.host.set_status(True)
        try:
            yield session
        finally:
            session.token_source.dispose()
            self._session = None
            self.host.set_status(False)

    # --- コマンド -----------------------------------------------------

    async def check_document(self) -> CorrectionSession | None:
        """文書全体を校正する。実行中なら中止する。"""
        if self.try_cancel():
            return None
        editor = self.host.active_editor()
        if editor is None:
            self.host.show_warning("テキストエディタがアクティブではありません。")
            return None
        text = editor.document_text()
        return await self.proofread(editor, text)

    async def check_selection(self) -> CorrectionSession | None:
        """選択範囲を校正する。実行中なら中止する。"""
        if self.try_cancel():
            return None
        editor = self.host.active_editor()
        if editor is None:
            self.host.show_warning("テキストエディタがアクティブではありません。")
            return None
        selection = editor.selection
        if selection is None or selection.is_empty:
            self.host.show_warning("テキストが選択されていません。")
            return None
        text = editor.text_in(selection)
        return await self.proofread(editor, text, selection)

    async def proofread(
        self,
        editor: TextEditor,
        text: str,
        selection: TextRange | None = None,
    ) -> CorrectionSession | None:
        """指定テキストを校正する。実行中の校正があればそれを中止して None を返す。"""
        if self.try_cancel():
            return None
        session = CorrectionSession(editor=editor, original_text=text, target_text=text, selection=selection)
        if selection is not None:
            full = editor.document_text()
            session.context = SelectionContext(before=full[:selection.start], after=full[selection.end:])

        with self._running(session):
            try:
                await self.host.with_progress(
                    "校正を開始します",
                    lambda progress, token: self._run(session, progress, token),
                )
                session.token.raise_if_cancelled()
                session.status = COMPLETED
            except ProofreadingCancelled:
                logger.info("校正がキャンセルされました")
                session.status = CANCELLED
            except Exception as e:
                logger.exception("校正エラー")
                session.status = FAILED
                self.host.show_error(f"校正中にエラーが発生しました: {e}")
        return session

    # --- 本体 ---------------------------------------------------------

    async def _run(self, session: CorrectionSession, progress: Progress, host_token: CancellationToken) -> None:
        unregister = host_token.register(self.try_cancel)
        try:
            await self._steps(session, progress)
        finally:
            unregister()

    async def _steps(self, session: CorrectionSession, progress: Progress) -> None:
        token = session.token

        progress.report("ルールベースの校正を実行中...")
        rules = self.rules if self.rules is not None else get_rules()
        result = apply_rules(rules, session.original_text)
        session.target_text = result.text
        for fired in result.fired:
            session.corrections.append(CorrectionRecord(
                original=fired.original,
                corrected=fired.corrected,
                description=fired.rule.description,
            ))

        # 文体は選択範囲ではなく文書全体で判定する
        session.style = analyze_style(session.editor.document_text())
        if session.style.style == MIXED:
            session.corrections.insert(0, CorrectionRecord(
                original=session.target_text,
                corrected=session.target_text,
                description=style_suggestion(session.style),
            ))
        token.raise_if_cancelled()

        if self.ai_enabled and self.client is None and not session.corrections:
            if not await self._prompt_for_api_key():
                token.raise_if_cancelled()
                self.host.show_warning("APIキーが設定されていないため、AI校正はスキップされました。")
                await self.host.show_info("修正の必要はありません。")
                return
        token.raise_if_cancelled()

        client = self.client
        if client is None:
            logger.info("AI校正は無効またはAPIキー未設定のためスキップ")
        else:
            progress.report("AI校正を実行中...")
            ai = await client.correct(session.target_text, session.context, session.style, token=token)
            if ai is not None and ai.corrected_text != session.target_text:
                session.corrections.append(CorrectionRecord(
                    original=session.target_text,
                    corrected=ai.corrected_text,
                    description=ai.rationale,
                ))
                session.target_text = ai.corrected_text

        token.raise_if_cancelled()
        progress.report("結果を生成中...")
        if not session.corrections:
            await self.host.show_info("修正の必要はありません。")
            return
        session.applied = await self.presenter.present(session)

    async def _prompt_for_api_key(self) -> bool:
        action = await self.host.show_info("OpenAI APIキーが必要です。APIキーを設定しますか？", SET_KEY, CANCEL)
        if action != SET_KEY:
            return False
        api_key = await self.host.show_input("OpenAI APIキーを入力してください", password=True, placeholder="sk-...")
        if not api_key:
            return False
        # 監視コールバック経由でクライアントが作り直される
        self.store.update(API_KEY, api_key)
        await self.host.show_info("APIキーを設定しました。")
        return self.client is not None


__all__ = [
    "Proofreader",
    "CorrectionRecord",
    "CorrectionSession",
    "RUNNING",
    "COMPLETED",
    "CANCELLED",
    "FAILED",
]

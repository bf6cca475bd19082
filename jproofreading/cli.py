from __future__ import annotations
import argparse
import asyncio
import getpass
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional, TextIO, TypeVar

from .ai_client import create_client
from .cancellation import CancellationToken, CancellationTokenSource
from .config import MODEL, PROXY_URL, JsonConfigStore, default_settings_path, load_toml_config
from .external_rules import load_rule_file
from .file_scanner import read_text, write_text
from .host import ProgressTask, TextRange
from .pipeline import CANCELLED, COMPLETED, Proofreader
from .presentation import render_diff
from .rules import get_rules
from .style import analyze_style, style_suggestion

T = TypeVar("T")


class FileEditor:
    """1ファイルをエディタとして扱う。replace で即座に書き戻す。"""

    def __init__(self, path: Path, text: str, encoding: str = "utf-8", selection: TextRange | None = None):
        self.path = path
        self.text = text
        self.encoding = encoding
        self._selection = selection

    @property
    def selection(self) -> Optional[TextRange]:
        return self._selection

    def document_text(self) -> str:
        return self.text

    def text_in(self, rng: TextRange) -> str:
        return self.text[rng.start:rng.end]

    def replace(self, rng: TextRange, text: str) -> None:
        self.text = self.text[:rng.start] + text + self.text[rng.end:]
        write_text(self.path, self.text, self.encoding)


class _TerminalProgress:
    def __init__(self, err: TextIO):
        self.err = err or sys.stderr

    def report(self, message: str) -> None:
        print(f"... {message}", file=self.err)


class TerminalHost:
    def __init__(
        self,
        editor: FileEditor | None,
        assume_yes: bool = False,
        interactive: bool = True,
        out: TextIO | None = None,
        err: TextIO | None = None,
        input_func: Callable[[str], str] = input,
        password_func: Callable[[str], str] = getpass.getpass,
    ):
        self.editor = editor
        self.assume_yes = assume_yes
        self.interactive = interactive
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.input_func = input_func
        self.password_func = password_func
        self._source: CancellationTokenSource | None = None

    def active_editor(self) -> FileEditor | None:
        return self.editor

    def show_warning(self, message: str) -> None:
        print(f"[warn] {message}", file=self.err)

    def show_error(self, message: str) -> None:
        print(f"[error] {message}", file=self.err)

    async def show_info(self, message: str, *choices: str) -> Optional[str]:
        print(message, file=self.err)
        if not choices:
            return None
        if self.assume_yes:
            return choices[0]
        if not self.interactive:
            return None
        menu = " / ".join(f"{n}) {c}" for n, c in enumerate(choices, 1))
        answer = await self._read(self.input_func, f"{menu}: ")
        if answer is None:
            return None
        answer = answer.strip()
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        return answer if answer in choices else None

    async def show_input(self, prompt: str, password: bool = False, placeholder: str = "") -> Optional[str]:
        if self.assume_yes or not self.interactive:
            return None
        label = f"{prompt} ({placeholder}): " if placeholder else f"{prompt}: "
        func = self.password_func if password else self.input_func
        answer = await self._read(func, label)
        return (answer or "").strip() or None

    async def _read(self, func: Callable[[str], str], label: str) -> Optional[str]:
        """入力をデーモンスレッドで読む。

        進捗表示中に中止されたら入力を待たずに None を返す。読み取りスレッドは
        ブロックしたまま残るが、デーモンなので終了処理を止めない。
        """
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()

        def _deliver(setter, value):
            if not fut.done():
                setter(value)

        def _worker():
            try:
                value = func(label)
            except Exception as e:
                callback = (_deliver, fut.set_exception, e)
            else:
                callback = (_deliver, fut.set_result, value)
            if not loop.is_closed():
                loop.call_soon_threadsafe(*callback)

        threading.Thread(target=_worker, name="jproofreading-input", daemon=True).start()
        token = self._source.token if self._source is not None else CancellationToken.none()
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not fut.done():
            fut.cancel()
            print(file=self.err)
            return None
        return fut.result()

    def cancel(self) -> None:
        """実行中の進捗を中止する（Ctrl-C と同じ）。"""
        if self._source is not None:
            self._source.cancel()

    async def with_progress(self, title: str, task: ProgressTask[T]) -> T:
        # Ctrl-C は中止要求として扱う
        source = CancellationTokenSource()
        self._source = source
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, self.cancel)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            pass
        print(title, file=self.err)
        try:
            return await task(_TerminalProgress(self.err), source.token)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)
            self._source = None
            source.dispose()

    def set_status(self, running: bool) -> None:
        if running:
            print("[校正中] Ctrl-C で中止", file=self.err)

    async def open_diff(self, original: str, modified: str, title: str) -> None:
        print(f"=== {title} ===", file=self.out)
        self.out.write(render_diff(original, modified))
        self.out.flush()


def _parse_selection(value: str) -> TextRange:
    try:
        start_s, end_s = value.split(":", 1)
        start, end = int(start_s), int(end_s)
    except ValueError:
        raise argparse.ArgumentTypeError("START:END の形式で指定してください")
    if start < 0 or end < start:
        raise argparse.ArgumentTypeError("範囲が不正です")
    return TextRange(start, end)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="jproofreading",
        description="日本語の文章を校正します（ルールベース + OpenAI）"
    )
    p.add_argument("path", help="校正するファイル")
    p.add_argument("--selection", type=_parse_selection, metavar="START:END", help="文字オフセットで指定した範囲のみ校正")
    p.add_argument("--config", help="設定ファイル(TOML: pyproject.toml の [tool.jproofreading])")
    p.add_argument("--rules", action="append", metavar="FILE", help="追加のYAML/JSONルールファイル (複数指定は繰り返し)")
    p.add_argument("--no-default-rules", action="store_true", help="組み込みルールを使わず --rules のルールのみ適用")
    p.add_argument("--model", help="使用するOpenAIモデル")
    p.add_argument("--proxy", help="プロキシサーバーのURL (例: http://proxy.example.com:8080)")
    p.add_argument("--no-ai", action="store_true", help="AI校正を行わずルールベースのみ実行")
    p.add_argument("--yes", action="store_true", help="確認なしで校正結果を適用")
    p.add_argument("--json", action="store_true", help="結果をJSONで出力")
    p.add_argument("--style-only", action="store_true", help="文体判定のみ行う")
    p.add_argument("--verbose", action="store_true", help="詳細ログを表示")
    return p


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    path = Path(args.path)
    loaded = read_text(path)
    if loaded is None:
        print(f"Failed to read {path}", file=sys.stderr)
        return 2
    text, encoding = loaded

    if args.style_only:
        analysis = analyze_style(text)
        if args.json:
            data = {"style": analysis.style, "plainEndings": analysis.plain_endings, "formalEndings": analysis.formal_endings}
            print(json.dumps(data, ensure_ascii=False, indent=2))
        else:
            print(style_suggestion(analysis))
        return 0

    if args.selection is not None and args.selection.end > len(text):
        print(f"選択範囲がファイルの長さ({len(text)})を超えています", file=sys.stderr)
        return 2

    store = JsonConfigStore(default_settings_path())
    if args.config:
        try:
            store.merge(load_toml_config(args.config))
        except (OSError, ValueError) as e:
            print(f"[warn] failed to load config {args.config}: {e}", file=sys.stderr)
    if args.model:
        store.merge({MODEL: args.model})
    if args.proxy:
        store.merge({PROXY_URL: args.proxy})

    rules = [] if args.no_default_rules else list(get_rules())
    for rf in args.rules or []:
        try:
            rules.extend(load_rule_file(rf))
        except Exception as e:  # pragma: no cover (CLIエラーパス)
            print(f"Failed to load rules {rf}: {e}", file=sys.stderr)
            return 2

    editor = FileEditor(path, text, encoding, selection=args.selection)
    host = TerminalHost(
        editor,
        assume_yes=args.yes,
        interactive=sys.stdin.isatty() and not args.json,
        out=sys.stderr if args.json else sys.stdout,
    )
    proofreader = Proofreader(host, store, rules=rules, client_factory=create_client, ai_enabled=not args.no_ai)
    command = proofreader.check_selection if args.selection is not None else proofreader.check_document
    session = asyncio.run(command())
    if session is None:
        return 2
    if args.json:
        print(json.dumps(session.to_dict(), ensure_ascii=False, indent=2))
    elif session.applied:
        print(f"Applied {len(session.corrections)} correction(s) to {path}")
    if session.status == CANCELLED:
        return 130
    return 0 if session.status == COMPLETED else 1

if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

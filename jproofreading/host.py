"""ホストエディタ側の機能の抽象。

校正処理はこれらの機能だけに依存する。ターミナル実装は cli.py を参照。
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from .cancellation import CancellationToken

T = TypeVar("T")


@dataclass(frozen=True)
class TextRange:
    """文書内の文字オフセット範囲 [start, end)。"""
    start: int
    end: int

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end


class TextEditor(Protocol):
    @property
    def selection(self) -> Optional[TextRange]: ...

    def document_text(self) -> str: ...

    def text_in(self, rng: TextRange) -> str: ...

    def replace(self, rng: TextRange, text: str) -> None: ...


class Progress(Protocol):
    def report(self, message: str) -> None: ...


ProgressTask = Callable[[Progress, CancellationToken], Awaitable[T]]


class EditorHost(Protocol):
    def active_editor(self) -> Optional[TextEditor]: ...

    def show_warning(self, message: str) -> None: ...

    def show_error(self, message: str) -> None: ...

    async def show_info(self, message: str, *choices: str) -> Optional[str]: ...

    async def show_input(self, prompt: str, password: bool = False, placeholder: str = "") -> Optional[str]: ...

    async def with_progress(self, title: str, task: ProgressTask[T]) -> T: ...

    def set_status(self, running: bool) -> None: ...

    async def open_diff(self, original: str, modified: str, title: str) -> None: ...


__all__ = ["TextRange", "TextEditor", "Progress", "EditorHost", "ProgressTask"]

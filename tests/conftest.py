import asyncio
import json
from types import SimpleNamespace

import pytest

from jproofreading.ai_client import AICorrectionClient
from jproofreading.cancellation import CancellationTokenSource
from jproofreading.host import TextRange


class FakeEditor:
    def __init__(self, text, selection=None):
        self.text = text
        self._selection = selection
        self.edits = []

    @property
    def selection(self):
        return self._selection

    def document_text(self):
        return self.text

    def text_in(self, rng):
        return self.text[rng.start:rng.end]

    def replace(self, rng, text):
        self.edits.append((rng, text))
        self.text = self.text[:rng.start] + text + self.text[rng.end:]


class FakeProgress:
    def __init__(self):
        self.messages = []

    def report(self, message):
        self.messages.append(message)


class FakeHost:
    """回答は {メッセージ: 選択肢} で指定。未指定の質問には None（キャンセル）を返す。"""

    def __init__(self, editor=None, answers=None, inputs=None):
        self.editor = editor
        self.answers = dict(answers or {})
        self.inputs = list(inputs or [])
        self.warnings = []
        self.errors = []
        self.infos = []
        self.diffs = []
        self.statuses = []
        self.progress = FakeProgress()
        self.progress_source = CancellationTokenSource()

    def active_editor(self):
        return self.editor

    def show_warning(self, message):
        self.warnings.append(message)

    def show_error(self, message):
        self.errors.append(message)

    async def show_info(self, message, *choices):
        self.infos.append(message)
        if not choices:
            return None
        return self.answers.get(message)

    async def show_input(self, prompt, password=False, placeholder=""):
        return self.inputs.pop(0) if self.inputs else None

    async def with_progress(self, title, task):
        return await task(self.progress, self.progress_source.token)

    def set_status(self, running):
        self.statuses.append(running)

    async def open_diff(self, original, modified, title):
        self.diffs.append((original, modified, title))


class FakeCompletions:
    """openai の chat.completions 互換。block=True なら応答を返さず待ち続ける。"""

    def __init__(self, content=None, exc=None, block=False, on_call=None):
        self.content = content
        self.exc = exc
        self.block = block
        self.on_call = on_call
        self.calls = []
        self.started = None

    async def create(self, model, messages):
        self.calls.append({"model": model, "messages": messages})
        if self.started is not None:
            self.started.set()
        if self.on_call is not None:
            self.on_call()
        if self.block:
            await asyncio.Event().wait()
        if self.exc is not None:
            raise self.exc
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_ai_client(completions, model="test-model"):
    fake_openai = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AICorrectionClient(fake_openai, model=model)


def ai_json(corrected, reason="AIによる修正"):
    return json.dumps({"corrected": corrected, "reason": reason}, ensure_ascii=False)


@pytest.fixture
def editor_factory():
    return FakeEditor


@pytest.fixture
def host_factory():
    return FakeHost


@pytest.fixture
def completions_factory():
    return FakeCompletions


@pytest.fixture
def ai_client_factory():
    return make_ai_client


@pytest.fixture
def ai_json_factory():
    return ai_json


@pytest.fixture
def selection_of():
    def _sel(text, part):
        start = text.index(part)
        return TextRange(start, start + len(part))
    return _sel

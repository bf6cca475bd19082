import asyncio
import re

from jproofreading.config import API_KEY, ConfigStore
from jproofreading.host import TextRange
from jproofreading.pipeline import CANCELLED, COMPLETED, FAILED, Proofreader
from jproofreading.rules import ProofreadingRule, Transform

APPLY_PROMPT = "校正結果を適用しますか？"
KEY_PROMPT = "OpenAI APIキーが必要です。APIキーを設定しますか？"
NOTHING = "修正の必要はありません。"


def _no_client(settings):
    return None


def _proofreader(host, client=None, store=None, **kw):
    factory = (lambda settings: client) if client is not None else _no_client
    return Proofreader(host, store or ConfigStore(), client_factory=factory, environ={}, **kw)


def test_rule_only_end_to_end(editor_factory, host_factory):
    editor = editor_factory("今日は晴れです")
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    session = asyncio.run(_proofreader(host).check_document())
    assert session.status == COMPLETED
    assert len(session.corrections) == 1
    assert session.corrections[0].description == "文末の「です」の後には句点が必要"
    assert session.target_text == "今日は晴れです。"
    assert session.applied
    assert editor.text == "今日は晴れです。"
    # ルールで修正があるのでAPIキーは求めない
    assert KEY_PROMPT not in host.infos


def test_nothing_to_do_without_credential(editor_factory, host_factory):
    editor = editor_factory("今日は晴れ")
    host = host_factory(editor)
    session = asyncio.run(_proofreader(host).check_document())
    assert session.status == COMPLETED
    assert session.corrections == []
    assert KEY_PROMPT in host.infos
    assert NOTHING in host.infos
    assert editor.edits == []
    assert host.diffs == []


def test_rule_record_before_ai_record(editor_factory, host_factory, completions_factory, ai_client_factory, ai_json_factory):
    editor = editor_factory("これはテストです")
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    completions = completions_factory(content=ai_json_factory("これは試験です。", "語の言い換え"))
    pr = _proofreader(host, client=ai_client_factory(completions))
    session = asyncio.run(pr.check_document())
    assert [c.description for c in session.corrections] == ["文末の「です」の後には句点が必要", "語の言い換え"]
    assert session.target_text == "これは試験です。"
    assert editor.text == "これは試験です。"
    # AI にはルール適用後のテキストを渡す
    assert completions.calls[0]["messages"][1]["content"] == "これはテストです。"
    original, modified, title = host.diffs[0]
    assert original == "これはテストです"
    assert modified.startswith("これは試験です。")
    assert "// 修正理由 2: 語の言い換え" in modified


def test_style_warning_comes_first(editor_factory, host_factory):
    editor = editor_factory("これはペンです。あれは本だ。\n今日は晴れです")
    host = host_factory(editor)
    session = asyncio.run(_proofreader(host).check_document())
    assert "文体が混在しています" in session.corrections[0].description
    assert session.corrections[0].original == session.corrections[0].corrected
    assert session.corrections[1].description == "文末の「です」の後には句点が必要"
    # 適用しなければ文書はそのまま
    assert not session.applied
    assert editor.edits == []


def test_selection_uses_context_and_replaces_only_range(editor_factory, host_factory, completions_factory, ai_client_factory, ai_json_factory, selection_of):
    text = "前文です。対象の文です後の文です。"
    editor = editor_factory(text, selection=selection_of(text, "対象の文です"))
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    echoed = "前文です。【ここから校正対象】対象の文章です。【ここまで校正対象】後の文です。"
    completions = completions_factory(content=ai_json_factory(echoed, "語の修正"))
    session = asyncio.run(_proofreader(host, client=ai_client_factory(completions)).check_selection())
    user = completions.calls[0]["messages"][1]["content"]
    assert user == "前文です。【ここから校正対象】対象の文です。【ここまで校正対象】後の文です。"
    assert session.target_text == "対象の文章です。"
    assert editor.text == "前文です。対象の文章です。後の文です。"


def test_style_counts_whole_document_for_selection(editor_factory, host_factory, selection_of):
    text = "これは本だ。選んだ部分です"
    editor = editor_factory(text, selection=selection_of(text, "選んだ部分です"))
    host = host_factory(editor)
    session = asyncio.run(_proofreader(host).check_selection())
    assert session.style.style == "plain"
    assert session.style.plain_endings == 1


def test_cancel_during_ai_call(editor_factory, host_factory, completions_factory, ai_client_factory):
    editor = editor_factory("これはテストです")
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    completions = completions_factory(block=True)
    pr = _proofreader(host, client=ai_client_factory(completions))

    async def scenario():
        completions.started = asyncio.Event()
        task = asyncio.create_task(pr.check_document())
        await completions.started.wait()
        assert pr.is_running
        # 実行中にもう一度呼ぶと中止になる
        assert await pr.check_document() is None
        return await task

    session = asyncio.run(scenario())
    assert session.status == CANCELLED
    assert [c.description for c in session.corrections] == ["文末の「です」の後には句点が必要"]
    assert editor.edits == []
    assert host.diffs == []
    assert host.errors == []
    assert not pr.is_running
    assert host.statuses[-1] is False


def test_cancel_from_progress_affordance(editor_factory, host_factory, completions_factory, ai_client_factory):
    editor = editor_factory("これはテストです")
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    completions = completions_factory(block=True, on_call=host.progress_source.cancel)
    pr = _proofreader(host, client=ai_client_factory(completions))
    session = asyncio.run(pr.check_document())
    assert session.status == CANCELLED
    assert editor.edits == []
    assert not pr.is_running


def test_try_cancel_when_idle(host_factory):
    pr = _proofreader(host_factory(None))
    assert pr.try_cancel() is False
    assert not pr.is_running


def test_ai_failure_keeps_rule_corrections(editor_factory, host_factory, completions_factory, ai_client_factory):
    editor = editor_factory("これはテストです")
    host = host_factory(editor)
    completions = completions_factory(exc=RuntimeError("upstream 500"))
    session = asyncio.run(_proofreader(host, client=ai_client_factory(completions)).check_document())
    assert session.status == COMPLETED
    assert len(session.corrections) == 1
    assert host.errors == []
    assert len(host.diffs) == 1


def test_unparseable_ai_reply_ignored(editor_factory, host_factory, completions_factory, ai_client_factory):
    editor = editor_factory("今日は晴れ")
    host = host_factory(editor)
    completions = completions_factory(content="すみません、わかりません")
    session = asyncio.run(_proofreader(host, client=ai_client_factory(completions)).check_document())
    assert session.corrections == []
    assert NOTHING in host.infos


def test_rule_bug_reports_error_and_leaves_document(editor_factory, host_factory):
    def boom(m):
        raise RuntimeError("bad rule")

    editor = editor_factory("今日は晴れです")
    host = host_factory(editor)
    rules = [ProofreadingRule(re.compile("晴れ"), Transform(boom), "壊れたルール")]
    pr = _proofreader(host, rules=rules)
    session = asyncio.run(pr.check_document())
    assert session.status == FAILED
    assert host.errors == ["校正中にエラーが発生しました: bad rule"]
    assert editor.edits == []
    assert not pr.is_running


def test_no_active_editor_warns(host_factory):
    host = host_factory(None)
    pr = _proofreader(host)
    assert asyncio.run(pr.check_document()) is None
    assert asyncio.run(pr.check_selection()) is None
    assert host.warnings == ["テキストエディタがアクティブではありません。"] * 2


def test_empty_selection_warns(editor_factory, host_factory):
    host = host_factory(editor_factory("本文です。", selection=TextRange(2, 2)))
    assert asyncio.run(_proofreader(host).check_selection()) is None
    assert host.warnings == ["テキストが選択されていません。"]


def test_api_key_prompt_enables_ai(editor_factory, host_factory, completions_factory, ai_client_factory, ai_json_factory):
    editor = editor_factory("今日は晴れ")
    host = host_factory(editor, answers={KEY_PROMPT: "設定する", APPLY_PROMPT: "適用"}, inputs=["sk-test"])
    completions = completions_factory(content=ai_json_factory("今日は晴れ。", "句点の追加"))
    client = ai_client_factory(completions)
    store = ConfigStore()
    pr = Proofreader(host, store, client_factory=lambda s: client if s.api_key else None, environ={})
    assert pr.client is None
    session = asyncio.run(pr.check_document())
    assert store.get(API_KEY) == "sk-test"
    assert session.target_text == "今日は晴れ。"
    assert editor.text == "今日は晴れ。"


def test_config_change_rebuilds_client(host_factory, completions_factory, ai_client_factory):
    client = ai_client_factory(completions_factory(content="{}"))
    store = ConfigStore()
    pr = Proofreader(host_factory(None), store, client_factory=lambda s: client if s.api_key else None, environ={})
    assert pr.client is None
    store.update(API_KEY, "sk-new")
    assert pr.client is client
    pr.dispose()
    store.update(API_KEY, "")
    assert pr.client is client


def test_second_direct_run_cancels_first(editor_factory, host_factory, completions_factory, ai_client_factory):
    editor = editor_factory("これはテストです")
    host = host_factory(editor, answers={APPLY_PROMPT: "適用"})
    completions = completions_factory(block=True)
    pr = _proofreader(host, client=ai_client_factory(completions))

    async def scenario():
        completions.started = asyncio.Event()
        first = asyncio.create_task(pr.proofread(editor, editor.text))
        await completions.started.wait()
        # 2つ目は新しいセッションを始めず、実行中のものを中止する
        assert await pr.proofread(editor, editor.text) is None
        return await first

    session = asyncio.run(scenario())
    assert session.status == CANCELLED
    assert len(completions.calls) == 1
    assert editor.edits == []
    assert not pr.is_running
    assert host.statuses.count(True) == 1


def test_ai_disabled_skips_key_prompt(editor_factory, host_factory):
    editor = editor_factory("今日は晴れ")
    host = host_factory(editor, answers={KEY_PROMPT: "設定する"}, inputs=["sk-secret"])
    store = ConfigStore()
    calls = []
    pr = Proofreader(host, store, client_factory=lambda s: calls.append(s), environ={}, ai_enabled=False)
    session = asyncio.run(pr.check_document())
    assert session.status == COMPLETED
    assert KEY_PROMPT not in host.infos
    assert NOTHING in host.infos
    assert host.warnings == []
    assert store.get(API_KEY) is None
    assert calls == []

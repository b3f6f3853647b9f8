"""
会话状态容器验证

运行方式：pytest test_session_store.py
"""

from apps.common.models.report import AIProvider, ChatSession, Language, Message
from apps.session.store import SessionStore, StoreEvent

from conftest import make_analysis


def _session(title="报告", with_analysis=True):
    messages = []
    if with_analysis:
        messages.append(Message(role="assistant", content="完成", analysis=make_analysis()))
    return ChatSession(title=title, messages=messages)


def test_add_session_prepends_and_becomes_current():
    """新会话插入到最前，并成为当前会话"""
    store = SessionStore()
    first, second = _session("一"), _session("二")
    store.add_session(first)
    store.add_session(second)

    assert [s.id for s in store.state.sessions] == [second.id, first.id]
    assert store.state.current_session_id == second.id
    assert store.current_session is second


def test_update_unknown_session_is_noop():
    """更新不存在的 id 不产生任何变更，也不通知订阅方"""
    store = SessionStore()
    store.add_session(_session())
    events = []
    store.subscribe(lambda change: events.append(change.event))
    before = store.state

    assert store.update_session("missing", title="x") is False
    assert store.state is before
    assert events == []


def test_update_session_merges_fields_and_keeps_id():
    store = SessionStore()
    session = _session()
    store.add_session(session)

    assert store.update_session(session.id, title="新标题", id="other") is True
    updated = store.get_session(session.id)
    assert updated.title == "新标题"
    assert updated.messages == session.messages


def test_previous_snapshot_is_untouched():
    """每次变更生成新快照，旧快照保持不变"""
    store = SessionStore()
    snapshot = store.state
    store.add_session(_session())
    assert snapshot.sessions == ()
    assert len(store.state.sessions) == 1


def test_delete_current_session_clears_pointer():
    store = SessionStore()
    keep, drop = _session("保留"), _session("删除")
    store.add_session(keep)
    store.add_session(drop)

    assert store.delete_session(drop.id) is True
    assert store.state.current_session_id is None
    assert [s.id for s in store.state.sessions] == [keep.id]
    assert store.delete_session(drop.id) is False


def test_delete_other_session_keeps_pointer():
    store = SessionStore()
    other, current = _session("其他"), _session("当前")
    store.add_session(other)
    store.add_session(current)

    store.delete_session(other.id)
    assert store.state.current_session_id == current.id


def test_set_sessions_resets_dangling_current():
    store = SessionStore()
    local = _session()
    store.add_session(local)

    remote_sessions = [_session("云端")]
    store.set_sessions(remote_sessions)
    assert store.state.current_session_id is None
    assert store.state.sessions == tuple(remote_sessions)


def test_set_current_session_rejects_unknown_id():
    store = SessionStore()
    session = _session()
    store.add_session(session)

    assert store.set_current_session_id("missing") is False
    assert store.state.current_session_id == session.id
    assert store.set_current_session_id(None) is True
    assert store.state.current_session_id is None


def test_last_analysis_uses_latest_analysis_message():
    store = SessionStore()
    session = _session()
    store.add_session(session)
    later = make_analysis()
    store.update_session(
        session.id,
        messages=list(session.messages)
        + [Message(role="user", content="问题"), Message(role="assistant", content="再次分析", analysis=later)],
    )

    assert store.last_analysis() == later
    assert SessionStore().last_analysis() is None


def test_update_config_of_active_provider_updates_active_config():
    store = SessionStore()
    store.update_config(AIProvider.GEMINI, model_name="gemini-2.5-pro")

    assert store.state.configs[AIProvider.GEMINI].model_name == "gemini-2.5-pro"
    assert store.state.active_config.model_name == "gemini-2.5-pro"


def test_update_config_of_inactive_provider_leaves_active_config():
    store = SessionStore()
    active_before = store.state.active_config
    store.update_config(AIProvider.DIFY, base_url="https://dify.example.com")

    assert store.state.configs[AIProvider.DIFY].base_url == "https://dify.example.com"
    assert store.state.active_config == active_before


def test_set_active_provider_and_language():
    store = SessionStore()
    store.set_active_provider(AIProvider.ZHIPU)
    store.set_language(Language.EN)
    assert store.state.active_config.provider == AIProvider.ZHIPU
    assert store.state.language == Language.EN


def test_message_feedback_toggles_locally():
    store = SessionStore()
    session = _session()
    store.add_session(session)
    message_id = session.messages[0].id
    changes = []
    store.subscribe(changes.append)

    assert store.set_message_feedback(session.id, message_id, "up") is True
    assert store.get_session(session.id).messages[0].feedback == "up"
    assert changes[-1].event == StoreEvent.FEEDBACK_CHANGED
    assert changes[-1].payload["message_id"] == message_id

    assert store.set_message_feedback(session.id, message_id, None) is True
    assert store.get_session(session.id).messages[0].feedback is None
    assert store.set_message_feedback(session.id, "missing", "up") is False


def test_failing_listener_does_not_block_others():
    store = SessionStore()
    seen = []

    def broken(change):
        raise RuntimeError("boom")

    store.subscribe(broken)
    unsubscribe = store.subscribe(lambda change: seen.append(change.event))
    store.set_language(Language.EN)
    assert seen == [StoreEvent.LANGUAGE_CHANGED]
    assert store.state.language == Language.EN

    unsubscribe()
    store.set_language(Language.ZH)
    assert seen == [StoreEvent.LANGUAGE_CHANGED]

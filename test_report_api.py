"""
HTTP 接口冒烟验证（TestClient + 替身服务）

运行方式：pytest test_report_api.py
"""

import pytest
from fastapi.testclient import TestClient

from apps.app import create_app
from apps.deps import build_container
from apps.settings import BackendSettings

from conftest import SAMPLE_IMAGE_B64, FakeAnalyzer, FakeChatter


@pytest.fixture
def client(tmp_path, remote):
    settings = BackendSettings(
        host="127.0.0.1",
        port=8001,
        gemini_model_name="gemini-2.5-flash",
        local_storage_dir=str(tmp_path / "local_storage"),
    )

    async def probe():
        return True

    container = build_container(
        settings,
        remote=remote,
        analyzer=FakeAnalyzer(),
        chatter=FakeChatter(reply="建议两周后复查。"),
        connection_probe=probe,
    )
    with TestClient(create_app(container)) as test_client:
        yield test_client


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["remote_sync_enabled"] is True


def test_analyze_requires_sign_in(client):
    body = client.post("/api/reports/analyze", json={"image_b64": SAMPLE_IMAGE_B64, "report_type": "BLOOD"}).json()
    assert body["success"] is False
    assert body["error"] == "请先登录。"


def test_full_flow(client, remote):
    state = client.post("/api/auth/session", json={"id": "user-1", "email": "a@example.com"}).json()
    assert state["success"] is True
    assert state["state"]["user"]["id"] == "user-1"

    analyzed = client.post(
        "/api/reports/analyze", json={"image_b64": SAMPLE_IMAGE_B64, "report_type": "BLOOD"}
    ).json()
    assert analyzed["success"] is True
    session = analyzed["session"]
    assert len(session["messages"]) == 1
    assert session["messages"][0]["analysis"]["reportType"] == "BLOOD"
    assert remote.upsert_session_calls == 1

    chat = client.post("/api/chat", json={"content": "需要复查吗？"}).json()
    assert chat["success"] is True
    assert chat["message"]["content"] == "建议两周后复查。"

    seed_id = session["messages"][0]["id"]
    feedback = client.post(f"/api/messages/{seed_id}/feedback", json={"session_id": session["id"], "feedback": "up"})
    assert feedback.json()["success"] is True

    sessions = client.get("/api/sessions").json()["sessions"]
    assert [m["role"] for m in sessions[0]["messages"]] == ["assistant", "user", "assistant"]

    assert client.delete(f"/api/sessions/{session['id']}").json()["success"] is True
    assert client.get("/api/sessions").json()["sessions"] == []

    assert client.delete("/api/auth/session").json()["success"] is True
    assert client.get("/api/state").json()["state"]["user"] is None


def test_chat_without_session_returns_specific_reason(client):
    """前一次失败的错误信息不会被当作本次未执行的原因"""
    stale = client.post("/api/reports/analyze", json={"image_b64": SAMPLE_IMAGE_B64, "report_type": "BLOOD"}).json()
    assert stale["error"] == "请先登录。"

    client.post("/api/auth/session", json={"id": "user-1"})
    body = client.post("/api/chat", json={"content": "需要复查吗？"}).json()
    assert body["success"] is False
    assert body["error"] == "没有可追问的会话。"


def test_analyze_upload_requires_image(client):
    client.post("/api/auth/session", json={"id": "user-1"})
    body = client.post("/api/reports/analyze_upload", data={"report_type": "CT"}).json()
    assert body["success"] is False


def test_analyze_upload_creates_session(client):
    client.post("/api/auth/session", json={"id": "user-1"})
    body = client.post(
        "/api/reports/analyze_upload",
        data={"report_type": "CT"},
        files=[("images", ("report.jpg", b"hello", "image/jpeg"))],
    ).json()
    assert body["success"] is True
    assert body["session"]["messages"][0]["image"].endswith(SAMPLE_IMAGE_B64)


def test_config_and_language(client):
    saved = client.put("/api/config", json={"provider": "DIFY", "base_url": "https://dify.example.com"}).json()
    assert saved["success"] is True
    config = client.get("/api/config").json()["state"]
    assert config["active_config"]["provider"] == "DIFY"

    assert client.put("/api/language", json={"language": "EN"}).json()["success"] is True
    assert client.get("/api/state").json()["state"]["language"] == "EN"

    assert client.put("/api/sessions/current", json={"session_id": "missing"}).json()["success"] is False
    assert client.delete("/api/error").json()["success"] is True


def test_configured_gemini_model_reaches_clients(tmp_path, remote):
    """未注入替身时，GEMINI_MODEL_NAME 决定解读与追问客户端的模型"""
    settings = BackendSettings(
        host="127.0.0.1",
        port=8001,
        gemini_model_name="gemini-2.5-pro",
        local_storage_dir=str(tmp_path / "local_storage"),
    )
    container = build_container(settings, remote=remote)
    try:
        assert container.pipeline.analyzer.client.config.model_name == "gemini-2.5-pro"
        assert container.pipeline.chatter.client.config.model_name == "gemini-2.5-pro"
        # 默认配置不覆盖模型
        assert container.store.state.active_config.model_name == ""
    finally:
        container.sync.detach()

"""Tests for the FastAPI routes with the full application wired up."""

import json

import pytest
import respx
from fastapi.testclient import TestClient
from httpx import Response

from conftest import ACCOUNTANT_AGENT, ASSISTANT_AGENT, CharCounter, make_config
from wecom_relay.app import RelayApp
from wecom_relay.messenger.crypto import WecomCrypto
from wecom_relay.server.routes import create_app

ENVELOPE = (
    "<xml><ToUserName><![CDATA[ww-corp]]></ToUserName>"
    "<AgentID><![CDATA[{agent_id}]]></AgentID>"
    "<Encrypt><![CDATA[{encrypt}]]></Encrypt></xml>"
)
TEXT_MESSAGE = (
    "<xml><ToUserName><![CDATA[ww-corp]]></ToUserName>"
    "<FromUserName><![CDATA[alice]]></FromUserName>"
    "<CreateTime>1700000000</CreateTime>"
    "<MsgType><![CDATA[text]]></MsgType>"
    "<Content><![CDATA[hello]]></Content>"
    "<MsgId>1</MsgId>"
    "<AgentID>{agent_id}</AgentID></xml>"
)


@pytest.fixture
def relay(tmp_path) -> RelayApp:
    config = make_config(storage_path=str(tmp_path / "relay.db"))
    return RelayApp(config, counter_factory=lambda encoding: CharCounter())


@pytest.fixture
def assistant_crypto(relay) -> WecomCrypto:
    return relay.registry.get(ASSISTANT_AGENT).crypto


def _verify_params(crypto: WecomCrypto, echo: str = "echo-42") -> dict:
    ciphertext, nonce = crypto.encrypt(echo, "ww-corp")
    return {
        "msg_signature": crypto.signature("0", nonce, ciphertext),
        "timestamp": "0",
        "nonce": nonce,
        "echostr": ciphertext,
    }


def test_health(relay):
    with TestClient(create_app(relay)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "assistants": [ASSISTANT_AGENT]}


def test_url_verification(relay, assistant_crypto):
    with TestClient(create_app(relay)) as client:
        response = client.get(f"/agent/{ASSISTANT_AGENT}", params=_verify_params(assistant_crypto))

    assert response.status_code == 200
    assert response.text == "echo-42"


def test_url_verification_for_accountant(relay):
    with TestClient(create_app(relay)) as client:
        response = client.get(
            f"/agent/{ACCOUNTANT_AGENT}", params=_verify_params(relay.accountant.crypto, "acc")
        )

    assert response.status_code == 200
    assert response.text == "acc"


def test_url_verification_signature_mismatch(relay, assistant_crypto):
    params = _verify_params(assistant_crypto)
    signature = params["msg_signature"]
    params["msg_signature"] = ("1" if signature[0] != "1" else "2") + signature[1:]

    with TestClient(create_app(relay)) as client:
        response = client.get(f"/agent/{ASSISTANT_AGENT}", params=params)

    assert response.status_code == 400


def test_url_verification_decrypt_failure(relay, assistant_crypto):
    params = {
        "msg_signature": assistant_crypto.signature("0", "N", "E"),
        "timestamp": "0",
        "nonce": "N",
        "echostr": "E",
    }

    with TestClient(create_app(relay)) as client:
        response = client.get(f"/agent/{ASSISTANT_AGENT}", params=params)

    assert response.status_code == 500


def test_url_verification_unknown_agent(relay, assistant_crypto):
    with TestClient(create_app(relay)) as client:
        response = client.get("/agent/7", params=_verify_params(assistant_crypto))

    assert response.status_code == 500


def test_missing_query_parameters(relay):
    with TestClient(create_app(relay)) as client:
        response = client.get(f"/agent/{ASSISTANT_AGENT}", params={"timestamp": "0"})

    assert response.status_code == 422


def test_inbound_message_is_answered_in_background(relay, assistant_crypto):
    ciphertext, nonce = assistant_crypto.encrypt(
        TEXT_MESSAGE.format(agent_id=ASSISTANT_AGENT), "ww-corp"
    )
    params = {
        "msg_signature": assistant_crypto.signature("1700000000", nonce, ciphertext),
        "timestamp": "1700000000",
        "nonce": nonce,
    }
    body = ENVELOPE.format(agent_id=ASSISTANT_AGENT, encrypt=ciphertext)

    with respx.mock(assert_all_called=False) as mock:
        provider_route = mock.post("https://llm.test/chat/completions").mock(
            return_value=Response(
                200,
                json={
                    "choices": [{"message": {"role": "assistant", "content": "hi"}}],
                    "usage": {"prompt_tokens": 5, "completion_tokens": 7},
                },
            )
        )
        mock.get("https://qyapi.test/cgi-bin/gettoken").mock(
            return_value=Response(200, json={"errcode": 0, "access_token": "tok", "expires_in": 7200})
        )
        send_route = mock.post("https://qyapi.test/cgi-bin/message/send").mock(
            return_value=Response(200, json={"errcode": 0, "errmsg": "ok"})
        )

        # Leaving the client runs the shutdown hook, which drains the reply task.
        with TestClient(create_app(relay)) as client:
            response = client.post(f"/agent/{ASSISTANT_AGENT}", params=params, content=body)

    assert response.status_code == 200
    assert response.text == ""
    assert provider_route.call_count == 1
    sent = json.loads(send_route.calls.last.request.content)
    assert sent["touser"] == "alice"
    assert sent["text"]["content"] == "hi"


def test_inbound_garbage_still_acknowledged(relay):
    with TestClient(create_app(relay)) as client:
        response = client.post(
            f"/agent/{ASSISTANT_AGENT}",
            params={"msg_signature": "x", "timestamp": "0", "nonce": "n"},
            content="not xml at all",
        )

    assert response.status_code == 200

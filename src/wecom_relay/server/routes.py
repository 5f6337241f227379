"""HTTP surface: the WeCom callback routes and a health probe."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse

from wecom_relay.errors import DecryptError, NotFound, SignatureMismatch
from wecom_relay.log import get_logger

if TYPE_CHECKING:
    from wecom_relay.app import RelayApp

logger = get_logger(__name__)

router = APIRouter()


def _relay(request: Request) -> RelayApp:
    return request.app.state.relay


@router.get("/agent/{agent_id}", response_class=PlainTextResponse)
async def verify_url(
    request: Request,
    agent_id: int,
    msg_signature: str,
    timestamp: str,
    nonce: str,
    echostr: str,
) -> PlainTextResponse:
    relay = _relay(request)
    try:
        plaintext = relay.reception.verify_url(agent_id, msg_signature, timestamp, nonce, echostr)
    except SignatureMismatch as e:
        logger.warning("url_verify_rejected", agent_id=agent_id, error=str(e))
        return PlainTextResponse(str(e), status_code=400)
    except (DecryptError, NotFound) as e:
        logger.error("url_verify_failed", agent_id=agent_id, error=str(e))
        return PlainTextResponse(str(e), status_code=500)

    logger.info("url_verified", agent_id=agent_id)
    return PlainTextResponse(plaintext)


@router.post("/agent/{agent_id}", response_class=PlainTextResponse)
async def receive_message(
    request: Request,
    agent_id: int,
    msg_signature: str,
    timestamp: str,
    nonce: str,
) -> PlainTextResponse:
    relay = _relay(request)
    body = (await request.body()).decode("utf-8", errors="replace")
    try:
        relay.dispatcher.spawn(
            relay.reception.handle_message(agent_id, msg_signature, timestamp, nonce, body),
            name=f"agent-{agent_id}",
        )
    except RuntimeError as e:
        logger.error("callback_not_accepted", agent_id=agent_id, error=str(e))
        return PlainTextResponse("", status_code=503)
    return PlainTextResponse("")


@router.get("/health")
async def health(request: Request) -> dict:
    relay = _relay(request)
    healthy = await relay.dispatcher.health_check()
    return {
        "status": "ok" if healthy else "stopping",
        "assistants": relay.registry.ids(),
    }


def create_app(relay: RelayApp) -> FastAPI:
    """Build the ASGI app; its lifespan starts and stops *relay*."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await relay.start()
        try:
            yield
        finally:
            await relay.stop()

    app = FastAPI(title="wecom-relay", lifespan=lifespan)
    app.state.relay = relay
    app.include_router(router)
    return app

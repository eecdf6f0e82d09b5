"""FastAPI app receiving GitHub webhook deliveries.

Deliveries are acknowledged with 202 straight away and dispatched in a
background task: GitHub gives up on a delivery after ten seconds, while a
debounced sync can legitimately take longer than that.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from prslack_core.dispatch import EventDispatcher
from prslack_core.slack.client import SlackClient

logger = logging.getLogger(__name__)


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def create_app(
    dispatcher: EventDispatcher,
    secret: str | None = None,
    slack: SlackClient | None = None,
    channel: str | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if slack is not None and channel:
            if await slack.validate_channel(channel):
                logger.info("Posting PR summaries to Slack channel %s", channel)
            else:
                logger.error("Slack channel %s failed validation; syncs will fail until it is fixed", channel)
        else:
            logger.warning("Slack disabled: set SLACK_TOKEN and SLACK_CHANNEL to enable it")
        if not secret:
            logger.warning("GITHUB_WEBHOOK_SECRET is not set; webhook signatures are not verified")
        yield
        if dispatcher.engine is not None:
            # Let debounced bursts finish instead of dropping them on shutdown.
            await dispatcher.engine.flush()

    app = FastAPI(title="prslack", lifespan=lifespan)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "slack_enabled": dispatcher.engine is not None}

    @app.post("/webhook", status_code=202)
    async def webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_github_event: str | None = Header(default=None),
        x_hub_signature_256: str | None = Header(default=None),
    ):
        body = await request.body()
        if secret and not verify_signature(secret, body, x_hub_signature_256):
            raise HTTPException(status_code=401, detail="Invalid signature")
        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")
        if x_github_event == "ping":
            return {"status": "pong"}
        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Body is not valid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")

        background_tasks.add_task(dispatcher.dispatch, x_github_event, payload)
        return {"status": "accepted", "event": x_github_event}

    return app

"""FastAPI app: Twitter webhook receiver and detection lookup API."""

import hmac
import json
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .config import Config
from .services.detection_service import DetectionService, LookupStatus
from .services.webhook_handler import WebhookHandler

logger = logging.getLogger(__name__)

basic_auth = HTTPBasic(auto_error=False)


def create_webhook_app(
    config: Config,
    webhook_handler: WebhookHandler,
    detection_service: DetectionService,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration
        webhook_handler: Receives webhook deliveries
        detection_service: Backs the lookup API

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="AI Detection Bot",
        description="Twitter webhook receiver and detection record lookup",
        version="1.0.0",
    )

    username = config.server.basic_auth_username
    password = (
        config.server.basic_auth_password.get_secret_value()
        if config.server.basic_auth_password
        else None
    )

    def require_api_auth(credentials: Optional[HTTPBasicCredentials] = Depends(basic_auth)) -> None:
        """HTTP Basic guard, active only when credentials are configured."""
        if not username or not password:
            return
        if credentials is None or not (
            hmac.compare_digest(credentials.username.encode(), username.encode())
            and hmac.compare_digest(credentials.password.encode(), password.encode())
        ):
            raise HTTPException(
                status_code=401,
                detail="Authentication required",
                headers={"WWW-Authenticate": 'Basic realm="Detection API"'},
            )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        database_ok = await detection_service.db_service.ping()
        return {
            "status": "healthy" if database_ok else "degraded",
            "service": "aidetect-bot",
            "database": "ok" if database_ok else "unavailable",
        }

    @app.get("/webhooks/twitter")
    async def twitter_crc(crc_token: Optional[str] = Query(default=None)) -> dict[str, str]:
        """Answer the challenge-response check the platform sends on registration."""
        if not crc_token:
            raise HTTPException(status_code=400, detail="Missing crc_token parameter")
        logger.info("Answering CRC challenge")
        return webhook_handler.crc_response(crc_token)

    @app.post("/webhooks/twitter")
    async def twitter_webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        """Accept a delivery and process it in the background.

        Always answers 200 so the platform does not retry or disable the hook.
        """
        body = await request.body()
        try:
            payload: Any = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Failed to parse webhook payload: %s", e)
            return JSONResponse({"status": "accepted"}, status_code=200)

        background_tasks.add_task(webhook_handler.handle_event, payload)
        return JSONResponse({"status": "accepted"}, status_code=200)

    @app.get("/api/detections/{short_id}", dependencies=[Depends(require_api_auth)])
    async def get_detection(short_id: str) -> dict[str, Any]:
        lookup = await detection_service.find_by_short_id(short_id)
        if lookup.status is LookupStatus.NOT_FOUND:
            raise HTTPException(status_code=404, detail="Detection not found")
        if lookup.status is LookupStatus.GONE:
            raise HTTPException(status_code=410, detail="Detection has been removed")
        return lookup.record.to_dict()

    @app.get("/api/detections", dependencies=[Depends(require_api_auth)])
    async def list_detections(limit: int = Query(default=50, ge=1, le=200)) -> dict[str, Any]:
        records = await detection_service.recent(limit)
        return {"count": len(records), "detections": [r.to_dict() for r in records]}

    return app

"""Webhook polling trigger routes (called by a scheduler)."""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from studio.config import get_settings
from studio.db.token_store import DatabaseTokenProvider
from studio.services.polling import PollingReconciler

logger = logging.getLogger(__name__)

router = APIRouter()

# Global reconciler instance
_reconciler: PollingReconciler | None = None


def get_reconciler() -> PollingReconciler:
    """Get or create the polling reconciler."""
    global _reconciler
    if _reconciler is None:
        _reconciler = PollingReconciler(DatabaseTokenProvider())
    return _reconciler


@router.get("/api/webhooks/poll/gmail", response_model=None)
async def poll_gmail(
    request: Request,
    reconciler: PollingReconciler = Depends(get_reconciler),
) -> JSONResponse | PlainTextResponse:
    """Run one Gmail polling tick.

    When WEBHOOK_POLLING_SECRET is set, the caller must send it as a bearer token.
    """
    request_id = uuid.uuid4().hex[:12]
    logger.info(f"[{request_id}] Gmail webhook polling triggered")

    secret = get_settings().webhook_polling_secret
    if secret and request.headers.get("authorization") != f"Bearer {secret}":
        logger.warning(f"[{request_id}] Unauthorized access attempt to Gmail polling endpoint")
        return PlainTextResponse("Unauthorized", status_code=401)

    try:
        summary = await reconciler.poll("gmail")
    except Exception as e:
        logger.exception(f"[{request_id}] Error in Gmail webhook polling")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Gmail webhook polling failed",
                "error": str(e) or "Unknown error",
            },
        )

    return JSONResponse(
        content={
            "success": True,
            "message": "Gmail webhook polling completed successfully",
            "results": summary.model_dump(mode="json"),
        }
    )

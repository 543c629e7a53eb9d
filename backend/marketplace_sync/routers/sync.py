from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from marketplace_sync.services.payments_sync import scheduler
from marketplace_sync.utils.logger import etsy_logger, logger


router = APIRouter(tags=["payments_sync"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


async def _read_scope(request: Request) -> Dict[str, Optional[str]]:
    """Optional {"integration_id", "user_id"} narrowing; anything else means a global run."""
    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return {"integration_id": None, "user_id": None}
    return {
        "integration_id": str(body["integration_id"]) if body.get("integration_id") else None,
        "user_id": str(body["user_id"]) if body.get("user_id") else None,
    }


@router.options("/sync-marketplace-payments")
async def sync_marketplace_payments_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok", status_code=200, headers=CORS_HEADERS)


@router.post("/sync-marketplace-payments")
async def sync_marketplace_payments(request: Request) -> JSONResponse:
    try:
        scope = await _read_scope(request)
        summary = await scheduler.run_marketplace_payments_sync(**scope)
        logger.info("[payments-sync] run summary: %s", summary.to_dict())
        return JSONResponse({"success": True}, status_code=200, headers=CORS_HEADERS)
    except Exception as exc:
        logger.error("[payments-sync] SYNC_FAILED: %s", exc, exc_info=True)
        return JSONResponse({"error": "SYNC_FAILED"}, status_code=500, headers=CORS_HEADERS)


@router.get("/etsy/logs")
async def get_etsy_logs(
    limit: Optional[int] = Query(100, description="Number of logs to retrieve"),
):
    logs = etsy_logger.get_logs(limit=limit)
    return {
        "logs": logs,
        "total": len(logs)
    }


@router.delete("/etsy/logs")
async def clear_etsy_logs():
    etsy_logger.clear_logs()
    return {"message": "Logs cleared successfully"}

# app/api/endpoints/audit.py
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, Query

from app.api.errors import error_response
from app.core.config import settings
from app.x402.audit import AuditEventType, get_audit_stats, read_audit_log

logger = logging.getLogger(__name__)
router = APIRouter()


def _operator_denied(api_key: Optional[str]):
    """Error response unless X-API-Key matches X402_AUDIT_API_KEY."""
    expected = settings.X402_AUDIT_API_KEY
    if not expected:
        return error_response(404, "not-found", "Audit API is disabled",
                              {"hint": "Set X402_AUDIT_API_KEY to enable it"})
    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected audit API request with missing or invalid X-API-Key")
        return error_response(401, "unauthorized", "Invalid or missing X-API-Key header")
    return None


@router.get("/audit")
async def list_audit_events(
    limit: int = Query(default=100, ge=1, le=1000, description="Return only the last N matching events"),
    event_type: Optional[AuditEventType] = Query(default=None, description="Only return events of this type"),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """
    Recent payment and resource audit events, newest last.

    Operator-only: requires the X-API-Key header to match X402_AUDIT_API_KEY.
    """
    denied = _operator_denied(x_api_key)
    if denied is not None:
        return denied
    events = read_audit_log(limit=limit, event_type=event_type)
    return {"events": events, "count": len(events)}


@router.get("/audit/stats")
async def audit_stats(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
    """Audit event counts by type. Operator-only."""
    denied = _operator_denied(x_api_key)
    if denied is not None:
        return denied
    return get_audit_stats()

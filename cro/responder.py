from __future__ import annotations

from typing import Any

import httpx

from . import db
from .api_models import ResourceEvent
from .reconciler import Outcome, ReconcileResult
from .settings import settings


def build_response(event: ResourceEvent, result: ReconcileResult | None = None, error: Exception | None = None) -> dict[str, Any]:
    """Provisioning outcome in the shape the template engine expects."""
    if error is not None or result is None:
        status, reason, physical_id = "FAILED", str(error or "no result"), event.physical_id
    else:
        status, physical_id = "SUCCESS", result.physical_id
        reason = result.outcome.value
        if result.outcome in {Outcome.SOFT_FAILED, Outcome.ALREADY_DELETED, Outcome.SKIPPED} and result.reason:
            reason = f"{result.outcome.value}: {result.reason}"
    return {
        "Status": status,
        "Reason": reason,
        "PhysicalResourceId": physical_id or event.logical_id or event.request_id,
        "StackId": event.stack_id,
        "RequestId": event.request_id,
        "LogicalResourceId": event.logical_id,
        "Data": {},
    }


def send_response(event: ResourceEvent, body: dict[str, Any], timeout_s: float | None = None) -> bool:
    """PUT the outcome to the event's response URL. Returns False if it could not be delivered."""
    if not event.response_url:
        return False
    timeout = settings.http_timeout_s if timeout_s is None else timeout_s
    try:
        with httpx.Client(timeout=timeout) as client:
            # Presigned URLs are signed without a content type.
            resp = client.put(event.response_url, json=body, headers={"Content-Type": ""})
        if resp.status_code >= 300:
            db.log_event("ERROR", f"Response delivery failed: HTTP {resp.status_code}", kind=event.kind, resource=event.logical_id)
            return False
    except httpx.HTTPError as e:
        db.log_event("ERROR", f"Response delivery failed: {type(e).__name__}: {e}", kind=event.kind, resource=event.logical_id)
        return False
    return True

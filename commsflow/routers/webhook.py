import hmac
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from commsflow.database import get_db
from commsflow.dependencies import Services, get_services
from commsflow.logging_config import get_logger
from commsflow.models import RawWebhook
from commsflow.schemas.project_update import CRMProjectUpdate, CRMProjectUpdateResponse
from commsflow.schemas.webhook import RawWebhookResponse, WebhookAck
from commsflow.services.crm_update_service import ProjectNotFoundError, apply_crm_project_update
from commsflow.services.normalizer import PARSERS
from commsflow.services.pipeline import handle_raw_webhook
from commsflow.services.webhook_intake import store_raw_webhook

logger = get_logger("webhook")

router = APIRouter()


def _get_request_webhook_secret(request: Request) -> str | None:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def _check_webhook_secret(request: Request, expected: Optional[str]) -> None:
    if not expected:
        return
    provided = _get_request_webhook_secret(request)
    if not provided or not hmac.compare_digest(provided, expected):
        logger.warning("Webhook rejected: bad secret", extra={"context": {"path": request.url.path}})
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.post("/webhooks/crm/project-update", response_model=CRMProjectUpdateResponse)
def receive_crm_project_update(
    request: Request,
    body: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """A project changed in the CRM; store the change and evaluate the project."""
    _check_webhook_secret(request, services.settings.webhook_secret)

    data = body["rawData"] if isinstance(body.get("rawData"), dict) else body
    try:
        update = CRMProjectUpdate.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid CRM project update: {exc.error_count()} errors")

    try:
        return apply_crm_project_update(db, update, services)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/webhooks/{provider}", response_model=WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    company_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Store the body, then normalize and route it.

    Once the raw body is stored the response is 200 whatever happens next,
    so providers do not redeliver.
    """
    _check_webhook_secret(request, services.settings.webhook_secret)

    service_name = provider.strip().lower()
    if service_name not in PARSERS:
        logger.info("Unknown webhook provider, using generic parser", extra={"context": {"provider": provider}})
        service_name = "generic"

    try:
        body = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during body read", extra={"context": {"provider": provider}})
        return WebhookAck(success=True, message="Client disconnected")

    raw = store_raw_webhook(
        db,
        service_name=service_name,
        body=body,
        content_type=request.headers.get("content-type"),
        company_id=company_id,
    )
    result = handle_raw_webhook(db, raw, services)

    message = result.status if result is not None else "stored; processing failed"
    return WebhookAck(success=True, webhook_id=raw.id, message=message)


@router.get("/webhooks/{webhook_id}", response_model=RawWebhookResponse)
def get_raw_webhook(webhook_id: UUID, db: Session = Depends(get_db)):
    raw = db.query(RawWebhook).filter(RawWebhook.id == webhook_id).first()
    if raw is None:
        raise HTTPException(status_code=404, detail=f"Webhook {webhook_id} not found")
    return RawWebhookResponse.from_row(raw)

# shopsync/api/v1/endpoints/webhook.py
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from shopsync.api.deps import get_engine, get_webhook_ingestor
from shopsync.core.exceptions import InvalidPayload, InvalidSignature, SyncError
from shopsync.engine import SyncEngine
from shopsync.schemas.webhook import WebhookResponse
from shopsync.services.webhook_ingestor import WebhookIngestor

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/webhook", response_model=WebhookResponse)
async def receive_pos_webhook(
    request: Request,
    engine: SyncEngine = Depends(get_engine),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor)
):
    """Приём события POS: подпись проверяется по сырому телу"""
    body = await request.body()
    signature = request.headers.get(engine.settings.WEBHOOK_SIGNATURE_HEADER)

    try:
        result = await ingestor.handle(body, signature)
    except InvalidSignature:
        raise HTTPException(status_code=401, detail="Invalid signature")
    except InvalidPayload as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SyncError as e:
        # POS недоступен - пусть POS повторит доставку
        logger.error(f"Webhook processing failed: {e}")
        raise HTTPException(status_code=502, detail="Upstream sync failed")

    return WebhookResponse(
        status=result.status,
        event_type=result.event_type,
        object_id=result.object_id,
        outcome=result.outcome
    )

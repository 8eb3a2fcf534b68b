# shopsync/api/deps.py
from fastapi import HTTPException, Request, status
from shopsync.engine import SyncEngine
from shopsync.services.webhook_ingestor import WebhookIngestor

def get_engine(request: Request) -> SyncEngine:
    """Движок, созданный в lifespan приложения"""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine is not running"
        )
    return engine

def get_webhook_ingestor(request: Request) -> WebhookIngestor:
    engine = get_engine(request)
    if engine.webhook is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="POS integration is not configured"
        )
    return engine.webhook

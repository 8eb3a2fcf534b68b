# shopsync/schemas/webhook.py
from pydantic import BaseModel
from typing import Any, Dict, Optional

class WebhookResponse(BaseModel):
    status: str
    event_type: str
    object_id: Optional[str] = None
    outcome: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
    service: str
    database: str
    cloud_reachable: bool
    sync: Dict[str, Any]

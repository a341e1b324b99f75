# /nearflow/models/api.py

from datetime import datetime
from typing import Optional, Dict
from pydantic import BaseModel, Field


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str

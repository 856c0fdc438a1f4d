from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ServiceKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    INFO = "info"


class SessionPayload(BaseModel):
    """Data accumulated across dialog steps. Unknown keys from older rows are dropped."""

    service: Optional[ServiceKind] = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class BotSessionState(BaseModel):
    user_id: str
    payload: SessionPayload = Field(default_factory=SessionPayload)
    step: str = "welcome"
    expires_at: datetime

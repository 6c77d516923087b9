"""Per-user image generation quota and identity models."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class QuotaRecord(BaseModel):
    """Daily image generation counter.

    ``count`` only holds for the local calendar day of ``last_generated_at``.
    Stored in the document store under the camelCase field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    count: int = Field(default=0, ge=0)
    last_generated_at: datetime = Field(default=EPOCH, alias="lastGeneratedAt")


class User(BaseModel):
    """Signed-in account as reported by the identity provider."""

    uid: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class ImageRequest(BaseModel):
    prompt: str

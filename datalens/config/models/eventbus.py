"""Event bus configuration models."""

from pydantic import BaseModel, Field


class EventBusConfig(BaseModel):
    """Delivery policy of the in-process event bus."""

    max_redeliveries: int = Field(
        default=5,
        ge=0,
        description="Redelivery attempts after a handler error",
    )
    redelivery_delay: float = Field(
        default=0.1,
        ge=0.0,
        description="Base delay before a redelivery (seconds), doubled per attempt",
    )

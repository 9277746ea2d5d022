"""Revalidation queue models."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QueueMessage(BaseModel):
    """A request to regenerate one page/route.

    ``grouping_key`` defaults to ``key``: delivery is ordered per key and
    never globally.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    grouping_key: str = ""
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    deduplication_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_grouping_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("grouping_key"):
            data = {**data, "grouping_key": data.get("key", "")}
        return data


class ReceivedMessage(BaseModel):
    """A message handed to a consumer, with its receipt for delete/extend."""

    model_config = ConfigDict(frozen=True)

    message: QueueMessage
    receipt_handle: str
    receive_count: int = 1


class QueueSpec(BaseModel):
    """Declarative queue settings."""

    model_config = ConfigDict(frozen=True)

    fifo: bool = True
    receive_wait_seconds: int = 20
    visibility_timeout_seconds: int = 30
    content_based_deduplication: bool = True


class ConsumerBinding(BaseModel):
    """Wires the queue to the revalidation compute unit."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = 5
    enabled: bool = True

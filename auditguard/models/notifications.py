"""Notification payload sent to the external sink."""

from typing import Literal

from pydantic import BaseModel, Field

from .enums import NotificationPriority


class Notification(BaseModel):
    """Structured outcome report."""

    title: str = Field(min_length=1)
    body: str
    priority: NotificationPriority
    type: Literal["system"] = "system"

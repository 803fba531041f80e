"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
        event_key = models.CharField(max_length=255, unique=True)

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Suited to records whose IDs travel outside the database (task
    arguments, log lines). Append-only logs that rely on insertion order,
    such as wallet transactions, keep the default big integer key.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True

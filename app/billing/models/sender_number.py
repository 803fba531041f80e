"""
SenderNumber model: which user owns a WhatsApp business phone number.

Delivery-status webhooks identify the sending number by its provider
phone_number_id. Mapping it back to a user lets settlement scope the
recipient fallback to that user's open charges.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel


class SenderNumber(BaseModel):
    """
    A business phone number provisioned for a user.

    Fields:
        phone_number_id: Provider identifier of the number (unique)
        user_id: Owner of the number
        waba_id: WhatsApp Business Account the number belongs to
        display_phone_number: Human-readable number
    """

    phone_number_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Provider phone number id (metadata.phone_number_id)",
    )
    user_id = models.PositiveBigIntegerField(
        db_index=True,
        help_text="Identifier of the user that owns this number",
    )
    waba_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="WhatsApp Business Account id",
    )
    display_phone_number = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Number as displayed to recipients",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        """Return string representation."""
        return f"SenderNumber({self.display_phone_number or self.phone_number_id}, user={self.user_id})"

    @classmethod
    def user_for(cls, phone_number_id: str | None) -> int | None:
        """Owner of a phone number id, or None if it is not registered."""
        if not phone_number_id:
            return None
        return (
            cls.objects.filter(phone_number_id=phone_number_id)
            .values_list("user_id", flat=True)
            .first()
        )

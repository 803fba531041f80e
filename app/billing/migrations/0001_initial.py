"""
Initial billing schema.

Creates:
    - WalletAccount with non-negative balance constraints
    - PricePlan, UserPricePlan, PricePlanOverride
    - PendingCharge (FSM state, fallback lookup index)
    - WalletTransaction with one debit and one resolution per pending charge
    - SenderNumber, WebhookEvent
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models

import billing.ledger.models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


def _big_pk():
    return (
        "id",
        models.BigAutoField(
            auto_created=True,
            primary_key=True,
            serialize=False,
            verbose_name="ID",
        ),
    )


CATEGORY_CHOICES = [
    ("authentication", "Authentication"),
    ("marketing", "Marketing"),
    ("utility", "Utility"),
    ("service", "Service"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        # ---------------------------------------------------------------------
        # Wallet
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="WalletAccount",
            fields=[
                _big_pk(),
                *_timestamps(),
                (
                    "user_id",
                    models.PositiveBigIntegerField(
                        help_text="Identifier of the user that owns this wallet",
                        unique=True,
                    ),
                ),
                (
                    "available_balance",
                    models.BigIntegerField(
                        default=0,
                        help_text="Spendable balance in the smallest currency unit",
                    ),
                ),
                (
                    "suspense_balance",
                    models.BigIntegerField(
                        default=0,
                        help_text="Balance held for sent messages, smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=billing.ledger.models.default_currency,
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("available_balance__gte", 0)),
                        name="wallet_available_balance_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("suspense_balance__gte", 0)),
                        name="wallet_suspense_balance_non_negative",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Pricing
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="PricePlan",
            fields=[
                _big_pk(),
                *_timestamps(),
                (
                    "name",
                    models.CharField(
                        help_text="Plan name shown to administrators",
                        max_length=100,
                        unique=True,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=billing.ledger.models.default_currency,
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "authentication_amount",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Price of an authentication message, smallest currency unit",
                    ),
                ),
                (
                    "marketing_amount",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Price of a marketing message, smallest currency unit",
                    ),
                ),
                (
                    "utility_amount",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Price of a utility message, smallest currency unit",
                    ),
                ),
                (
                    "service_amount",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Price of a service message, smallest currency unit",
                    ),
                ),
                (
                    "is_default",
                    models.BooleanField(
                        default=False,
                        help_text="Whether this plan applies to users without an assignment",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_default", True)),
                        fields=("is_default",),
                        name="single_default_price_plan",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Pending charges
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="PendingCharge",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "user_id",
                    models.PositiveBigIntegerField(
                        db_index=True,
                        help_text="Identifier of the user that was charged",
                    ),
                ),
                (
                    "correlation_key",
                    models.CharField(
                        help_text="Current message identifier used to match delivery statuses",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "original_correlation_key",
                    models.CharField(
                        db_index=True,
                        help_text="Message identifier the charge was created with",
                        max_length=255,
                    ),
                ),
                (
                    "recipient",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Recipient phone number, digits only",
                        max_length=32,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=CATEGORY_CHOICES,
                        help_text="Message category the price was resolved for",
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.PositiveBigIntegerField(
                        help_text="Charged amount in the smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=billing.ledger.models.default_currency,
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "country_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Recipient country code used for price overrides",
                        max_length=8,
                    ),
                ),
                (
                    "state",
                    django_fsm.FSMField(
                        choices=[
                            ("open", "Open"),
                            ("settled", "Settled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="open",
                        help_text="Current state of the charge (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the charge was settled or refunded",
                        null=True,
                    ),
                ),
                (
                    "resolution_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Why the charge was resolved (delivery status, dispatch failure)",
                        max_length=255,
                    ),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Wallet the amount was moved into suspense on",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="pending_charges",
                        to="billing.walletaccount",
                    ),
                ),
                (
                    "price_plan",
                    models.ForeignKey(
                        blank=True,
                        help_text="Price plan the amount was taken from",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="pending_charges",
                        to="billing.priceplan",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["user_id", "recipient", "state", "created_at"],
                        name="pending_charge_fallback_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="pending_charge_amount_positive",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Transaction log
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="WalletTransaction",
            fields=[
                _big_pk(),
                (
                    "user_id",
                    models.PositiveBigIntegerField(
                        db_index=True,
                        help_text="Identifier of the wallet owner",
                    ),
                ),
                (
                    "transaction_id",
                    models.CharField(
                        help_text="Externally visible transaction identifier",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("recharge", "Recharge"),
                            ("adjustment", "Adjustment"),
                            ("suspense_debit", "Suspense Debit"),
                            ("suspense_settle", "Suspense Settle"),
                            ("suspense_refund", "Suspense Refund"),
                        ],
                        help_text="Kind of movement",
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.PositiveBigIntegerField(
                        help_text="Absolute amount in the smallest currency unit",
                    ),
                ),
                (
                    "available_delta",
                    models.BigIntegerField(
                        help_text="Signed change applied to the available balance",
                    ),
                ),
                (
                    "suspense_delta",
                    models.BigIntegerField(
                        help_text="Signed change applied to the suspense balance",
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "reference",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Correlation key or external reference",
                        max_length=255,
                    ),
                ),
                (
                    "recipient",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Recipient phone number, digits only (suspense debits)",
                        max_length=32,
                    ),
                ),
                (
                    "details",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Human-readable description",
                    ),
                ),
                (
                    "from_label",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Where the money came from (e.g. 'Wallet')",
                        max_length=50,
                    ),
                ),
                (
                    "to_label",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Where the money went (e.g. 'Suspense Account')",
                        max_length=50,
                    ),
                ),
                (
                    "balance_after",
                    models.BigIntegerField(
                        help_text="Available balance right after this movement",
                    ),
                ),
                (
                    "suspense_balance_after",
                    models.BigIntegerField(
                        help_text="Suspense balance right after this movement",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this movement was recorded",
                    ),
                ),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Wallet this movement applies to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="billing.walletaccount",
                    ),
                ),
                (
                    "pending_charge",
                    models.ForeignKey(
                        blank=True,
                        help_text="Pending charge this movement belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="billing.pendingcharge",
                    ),
                ),
            ],
            options={
                "ordering": ["-id"],
                "indexes": [
                    models.Index(fields=["user_id", "kind"], name="wallet_tx_user_kind_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="wallet_transaction_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("kind", "suspense_debit")),
                        fields=("pending_charge",),
                        name="single_debit_per_pending_charge",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(
                            ("kind__in", ["suspense_settle", "suspense_refund"])
                        ),
                        fields=("pending_charge",),
                        name="single_resolution_per_pending_charge",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Plan assignment and overrides
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="UserPricePlan",
            fields=[
                _big_pk(),
                *_timestamps(),
                (
                    "user_id",
                    models.PositiveBigIntegerField(
                        help_text="Identifier of the user the plan applies to",
                    ),
                ),
                (
                    "effective_from",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the assignment takes effect",
                    ),
                ),
                (
                    "price_plan",
                    models.ForeignKey(
                        help_text="Assigned plan",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="assignments",
                        to="billing.priceplan",
                    ),
                ),
            ],
            options={
                "ordering": ["-effective_from"],
                "indexes": [
                    models.Index(
                        fields=["user_id", "effective_from"],
                        name="user_price_plan_effective_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PricePlanOverride",
            fields=[
                _big_pk(),
                *_timestamps(),
                (
                    "country_code",
                    models.CharField(
                        help_text="Recipient country code (ISO 3166 alpha-2, upper case)",
                        max_length=8,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=CATEGORY_CHOICES,
                        help_text="Category the override applies to",
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.PositiveIntegerField(
                        help_text="Price per message, smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=billing.ledger.models.default_currency,
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "price_plan",
                    models.ForeignKey(
                        help_text="Plan this override belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="overrides",
                        to="billing.priceplan",
                    ),
                ),
            ],
            options={
                "ordering": ["price_plan", "country_code", "category"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("price_plan", "country_code", "category"),
                        name="unique_price_plan_override",
                    ),
                ],
            },
        ),
        # ---------------------------------------------------------------------
        # Webhook intake
        # ---------------------------------------------------------------------
        migrations.CreateModel(
            name="SenderNumber",
            fields=[
                _big_pk(),
                *_timestamps(),
                (
                    "phone_number_id",
                    models.CharField(
                        help_text="Provider phone number id (metadata.phone_number_id)",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "user_id",
                    models.PositiveBigIntegerField(
                        db_index=True,
                        help_text="Identifier of the user that owns this number",
                    ),
                ),
                (
                    "waba_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="WhatsApp Business Account id",
                        max_length=64,
                    ),
                ),
                (
                    "display_phone_number",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Number as displayed to recipients",
                        max_length=32,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "event_key",
                    models.CharField(
                        help_text="Unique '<message id>:<status>' key for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Event type used to route to a handler",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Decoded delivery event (JSON)"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_status_created_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="webhook_status_retry_idx",
                    ),
                ],
            },
        ),
    ]

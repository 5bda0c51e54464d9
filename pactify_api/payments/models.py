from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog

User = get_user_model()


class ConnectedAccount(models.Model):
    """
    A freelancer's payout account registered with the payment processor (Stripe Connect).

    The verification fields are a last-known snapshot refreshed on every release attempt;
    they are never used to decide whether funds may move. Rows are never deleted.
    """
    PROVIDER_CHOICES = (
        ('stripe', 'Stripe'),
    )

    user = models.OneToOneField(User, on_delete=models.PROTECT, related_name='connected_account')
    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES, default='stripe')
    external_account_id = models.CharField(max_length=255, unique=True, help_text="Stripe Connect account ID (acct_...)")

    transfers_active = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    details_submitted = models.BooleanField(default=False)
    requirements_currently_due = models.JSONField(default=list, blank=True)
    requirements_past_due = models.JSONField(default=list, blank=True)
    requirements_eventually_due = models.JSONField(default=list, blank=True)
    disabled_reason = models.CharField(max_length=255, blank=True)

    last_synced_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self):
        return f"{self.provider} – {self.external_account_id}"


class WebhookEvent(models.Model):
    """
    Stores processed webhook event IDs to ensure idempotency.
    """
    provider = models.CharField(max_length=50)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100, blank=True)
    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['provider', 'event_id'], name='unique_provider_webhook_event'),
        ]

    def __str__(self):
        return f"{self.provider}:{self.event_id}"


auditlog.register(ConnectedAccount)

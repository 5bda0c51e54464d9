import uuid

from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog

from accounts.models import CustomUser

User = get_user_model()


class Withdrawal(models.Model):
    """A payout of released escrow funds from the user's connected account to their bank."""

    class Status(models.TextChoices):
        QUEUED = 'queued', 'Queued'
        PROCESSING = 'processing', 'Processing'
        PAID = 'paid', 'Paid'
        FAILED = 'failed', 'Failed'

    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name='withdrawals')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.QUEUED)
    required_verification = models.CharField(
        max_length=20, choices=CustomUser.VerificationLevel.choices, default=CustomUser.VerificationLevel.BASIC
    )
    payout_reference = models.CharField(max_length=255, blank=True, db_index=True)
    failure_reason = models.CharField(max_length=500, blank=True)
    trace_id = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='withdrawal_amount_positive'),
        ]

    def __str__(self):
        return f"{self.user.email} {self.amount} {self.currency} ({self.status})"


auditlog.register(Withdrawal)

from django.db import models
from auditlog.registry import auditlog

from accounts.models import CustomUser
from contracts.models import Contract


class Dispute(models.Model):
    class Status(models.TextChoices):
        OPEN = 'open', 'Open'
        RESOLVED = 'resolved', 'Resolved'

    class DisputeType(models.TextChoices):
        QUALITY = 'quality', 'Work Quality'
        TIMELINE = 'timeline', 'Timeline'
        PAYMENT = 'payment', 'Payment Issue'
        SCOPE = 'scope', 'Scope'
        OTHER = 'other', 'Other'

    class Outcome(models.TextChoices):
        RESUME = 'resume', 'Resume Work'
        REFUND = 'refund', 'Refund Client'

    contract = models.ForeignKey(Contract, on_delete=models.PROTECT, related_name='disputes')
    initiated_by = models.ForeignKey(CustomUser, on_delete=models.PROTECT, related_name='disputes')

    dispute_type = models.CharField(max_length=20, choices=DisputeType.choices, default=DisputeType.OTHER)
    description = models.TextField()
    contract_status_at_open = models.CharField(max_length=30, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OPEN)
    outcome = models.CharField(max_length=20, choices=Outcome.choices, blank=True)
    resolution = models.TextField(blank=True)
    resolved_by = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='resolved_disputes')
    resolved_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['contract'], condition=models.Q(status='open'), name='one_open_dispute_per_contract'
            ),
        ]

    def __str__(self):
        return f"Dispute on {self.contract.contract_number} by {self.initiated_by}"


class DisputeMessage(models.Model):
    dispute = models.ForeignKey('Dispute', on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(CustomUser, on_delete=models.CASCADE)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']


auditlog.register(Dispute)

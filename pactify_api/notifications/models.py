from django.db import models
from django.contrib.auth import get_user_model

User = get_user_model()


class Notification(models.Model):
    class NotificationType(models.TextChoices):
        CONTRACT_SIGNED = 'contract_signed', 'Contract Signed'
        READY_FOR_FUNDING = 'ready_for_funding', 'Ready For Funding'
        ESCROW_FUNDED = 'escrow_funded', 'Escrow Funded'
        DELIVERABLE_SUBMITTED = 'deliverable_submitted', 'Deliverable Submitted'
        MILESTONE_APPROVED = 'milestone_approved', 'Milestone Approved'
        REVISION_REQUESTED = 'revision_requested', 'Revision Requested'
        PAYMENT_RELEASED = 'payment_released', 'Payment Released'
        PAYMENT_REFUNDED = 'payment_refunded', 'Payment Refunded'
        DISPUTE_OPENED = 'dispute_opened', 'Dispute Opened'
        DISPUTE_RESOLVED = 'dispute_resolved', 'Dispute Resolved'
        WITHDRAWAL_UPDATE = 'withdrawal_update', 'Withdrawal Update'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    contract = models.ForeignKey(
        'contracts.Contract', on_delete=models.CASCADE, null=True, blank=True, related_name='notifications'
    )
    notification_type = models.CharField(max_length=40, choices=NotificationType.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.notification_type} -> {self.user}"

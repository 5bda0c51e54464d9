import uuid

from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField

from contracts.models import Contract, Milestone

User = get_user_model()


class EscrowLedgerEntry(models.Model):
    """
    One hold-then-release (or refund) of client funds for a contract or milestone.

    Status only moves pending -> held -> released | refunded, each step a conditional
    update guarded on the previous status. A partial release shrinks the claimed entry
    to the released amount and books the remainder as a new held entry whose
    ``parent`` points back at it.
    """
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        HELD = 'held', 'Held'
        RELEASED = 'released', 'Released'
        REFUNDED = 'refunded', 'Refunded'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    contract = models.ForeignKey(Contract, on_delete=models.PROTECT, related_name='ledger_entries')
    milestone = models.ForeignKey(
        Milestone, on_delete=models.PROTECT, null=True, blank=True, related_name='ledger_entries'
    )
    parent = models.ForeignKey(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='remainders'
    )
    payer = models.ForeignKey(User, on_delete=models.PROTECT, related_name='escrow_payments')
    payee = models.ForeignKey(User, on_delete=models.PROTECT, related_name='escrow_receipts')

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    platform_fee = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    processor_fee = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    total_charged = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    funding_session_ref = models.CharField(max_length=255, blank=True, db_index=True)
    payment_reference = models.CharField(max_length=255, blank=True)
    transfer_reference = models.CharField(max_length=255, blank=True)
    refund_reference = models.CharField(max_length=255, blank=True)
    release_reason = models.CharField(max_length=500, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    held_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    history = AuditlogHistoryField(pk_indexable=False)

    class Meta:
        ordering = ['created_at']
        verbose_name = "Escrow Ledger Entry"
        verbose_name_plural = "Escrow Ledger Entries"
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='ledger_entry_amount_positive'),
            models.UniqueConstraint(
                fields=['contract'], condition=models.Q(status='pending'), name='one_pending_funding_per_contract'
            ),
        ]

    def __str__(self):
        return f"{self.status} {self.amount} {self.currency} for {self.contract_id}"


auditlog.register(EscrowLedgerEntry)

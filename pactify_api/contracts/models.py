import uuid

from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField

User = get_user_model()


def generate_contract_number():
    return f"PCT-{uuid.uuid4().hex[:8].upper()}"


class ContractStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    PENDING_SIGNATURES = 'pending_signatures', 'Pending Signatures'
    PENDING_FUNDING = 'pending_funding', 'Pending Funding'
    ACTIVE = 'active', 'Active'
    PENDING_DELIVERY = 'pending_delivery', 'Pending Delivery'
    IN_REVIEW = 'in_review', 'In Review'
    REVISION_REQUESTED = 'revision_requested', 'Revision Requested'
    PENDING_COMPLETION = 'pending_completion', 'Pending Completion'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    DISPUTED = 'disputed', 'Disputed'


class MilestoneStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    IN_PROGRESS = 'in_progress', 'In Progress'
    SUBMITTED = 'submitted', 'Submitted'
    APPROVED = 'approved', 'Approved'
    COMPLETED = 'completed', 'Completed'
    REVISION_REQUESTED = 'revision_requested', 'Revision Requested'


class Contract(models.Model):
    """
    An agreement between one client and one freelancer.

    ``status`` is only ever written by ``contracts.lifecycle``.
    """
    class ContractType(models.TextChoices):
        FIXED = 'fixed', 'Fixed Price'
        MILESTONE = 'milestone', 'Milestone Based'
        HOURLY = 'hourly', 'Hourly'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    contract_number = models.CharField(max_length=20, unique=True, default=generate_contract_number, editable=False)
    creator = models.ForeignKey(User, related_name='created_contracts', on_delete=models.PROTECT)
    client = models.ForeignKey(User, related_name='client_contracts', on_delete=models.PROTECT)
    freelancer = models.ForeignKey(User, related_name='freelancer_contracts', on_delete=models.PROTECT)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    type = models.CharField(max_length=20, choices=ContractType.choices, default=ContractType.FIXED)
    status = models.CharField(max_length=30, choices=ContractStatus.choices, default=ContractStatus.DRAFT)
    is_funded = models.BooleanField(default=False)

    # fee snapshot taken when the funding session is opened
    platform_fee_amount = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    processor_fee_amount = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    total_charged_amount = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    funded_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    history = AuditlogHistoryField(pk_indexable=False)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=models.Q(total_amount__gt=0), name='contract_total_amount_positive'),
        ]

    def __str__(self):
        return f"{self.contract_number} {self.title}"

    def role_of(self, user):
        """Return 'client', 'freelancer', 'creator' or None for ``user`` on this contract."""
        if user is None or not user.is_authenticated:
            return None
        if self.client_id == user.pk:
            return ContractParty.Role.CLIENT
        if self.freelancer_id == user.pk:
            return ContractParty.Role.FREELANCER
        if self.creator_id == user.pk:
            return 'creator'
        return None


class ContractParty(models.Model):
    class Role(models.TextChoices):
        CLIENT = 'client', 'Client'
        FREELANCER = 'freelancer', 'Freelancer'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SIGNED = 'signed', 'Signed'

    contract = models.ForeignKey(Contract, related_name='parties', on_delete=models.CASCADE)
    user = models.ForeignKey(User, related_name='contract_parties', on_delete=models.PROTECT)
    role = models.CharField(max_length=20, choices=Role.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    signature_data = models.TextField(blank=True)
    signature_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['contract', 'role'], name='unique_contract_party_role'),
        ]

    def __str__(self):
        return f"{self.user} ({self.role}) on {self.contract_id}"


class Milestone(models.Model):
    contract = models.ForeignKey(Contract, on_delete=models.PROTECT, related_name="milestones")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=30, choices=MilestoneStatus.choices, default=MilestoneStatus.PENDING)
    due_date = models.DateField(null=True, blank=True)
    order_index = models.PositiveIntegerField(default=0)

    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    revision_notes = models.TextField(blank=True)

    class Meta:
        ordering = ['order_index', 'id']

    def __str__(self):
        return f"{self.title} ({self.status})"


class Deliverable(models.Model):
    class DeliverableType(models.TextChoices):
        FILE = 'file', 'File'
        LINK = 'link', 'Link'
        TEXT = 'text', 'Text'

    contract = models.ForeignKey(Contract, on_delete=models.CASCADE, related_name='deliverables')
    milestone = models.ForeignKey(Milestone, on_delete=models.SET_NULL, null=True, blank=True, related_name='deliverables')
    submitted_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='deliverables')
    deliverable_type = models.CharField(max_length=10, choices=DeliverableType.choices)
    title = models.CharField(max_length=200)
    description = models.CharField(max_length=1000, blank=True)
    link_url = models.URLField(blank=True)
    text_content = models.TextField(blank=True)
    file_url = models.URLField(blank=True)
    version = models.PositiveIntegerField(default=1)
    is_latest = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title} v{self.version}"


auditlog.register(Contract)
auditlog.register(ContractParty, exclude_fields=['signature_data'])
auditlog.register(Milestone)

from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog

User = get_user_model()


class Subscription(models.Model):
    """
    A user's paid plan at the payment processor.

    The row mirrors the processor's subscription and is refreshed from it on every
    webhook; the user's ``subscription_tier`` follows from ``status`` and ``tier``.
    """
    class Status(models.TextChoices):
        INCOMPLETE = 'incomplete', 'Incomplete'
        INCOMPLETE_EXPIRED = 'incomplete_expired', 'Incomplete Expired'
        TRIALING = 'trialing', 'Trialing'
        ACTIVE = 'active', 'Active'
        PAST_DUE = 'past_due', 'Past Due'
        UNPAID = 'unpaid', 'Unpaid'
        CANCELED = 'canceled', 'Canceled'
        PAUSED = 'paused', 'Paused'

    user = models.OneToOneField(User, on_delete=models.PROTECT, related_name='subscription')
    tier = models.CharField(max_length=20, choices=User.SubscriptionTier.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.INCOMPLETE)
    external_subscription_id = models.CharField(max_length=255, unique=True)
    external_customer_id = models.CharField(max_length=255, blank=True)
    price_reference = models.CharField(max_length=255, blank=True)
    item_reference = models.CharField(max_length=255, blank=True)
    cancel_at_period_end = models.BooleanField(default=False)
    current_period_end = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} - {self.tier} ({self.status})"


auditlog.register(Subscription)

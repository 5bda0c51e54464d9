from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager
from country_list import countries_for_language
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField


class CustomUserManager(BaseUserManager):
    """
    Manager for CustomUser. Handles user and superuser creation using email as the unique identifier.
    """
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Email is required.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        return self.create_user(email, password, **extra_fields)


class CustomUser(AbstractUser):
    """
    Platform user. Any user can act as client on one contract and freelancer on another;
    the role is decided per contract by ContractParty.

    Carries the profile attributes the escrow workflow reads: subscription tier (drives the
    platform fee when paying) and the platform-side KYC level (drives withdrawal eligibility).
    """
    class SubscriptionTier(models.TextChoices):
        FREE = 'free', 'Free'
        PROFESSIONAL = 'professional', 'Professional'
        BUSINESS = 'business', 'Business'

    class KycStatus(models.TextChoices):
        NOT_STARTED = 'not_started', 'Not Started'
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    class VerificationLevel(models.TextChoices):
        NONE = 'none', 'None'
        BASIC = 'basic', 'Basic'
        ENHANCED = 'enhanced', 'Enhanced'
        BUSINESS = 'business', 'Business'

    class EnhancedKycStatus(models.TextChoices):
        NOT_STARTED = 'not_started', 'Not Started'
        PENDING = 'pending', 'Pending'
        VERIFIED = 'verified', 'Verified'
        FAILED = 'failed', 'Failed'

    phone_number = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=50, choices=countries_for_language('en'), blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    email = models.EmailField(unique=True, blank=False)
    username = None

    subscription_tier = models.CharField(
        max_length=20, choices=SubscriptionTier.choices, default=SubscriptionTier.FREE
    )
    kyc_status = models.CharField(max_length=20, choices=KycStatus.choices, default=KycStatus.NOT_STARTED)
    verification_level = models.CharField(
        max_length=20, choices=VerificationLevel.choices, default=VerificationLevel.NONE
    )
    enhanced_kyc_status = models.CharField(
        max_length=20, choices=EnhancedKycStatus.choices, default=EnhancedKycStatus.NOT_STARTED
    )
    kyc_verified_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['first_name', 'last_name',]

    objects = CustomUserManager()

    history = AuditlogHistoryField()

    def __str__(self):
        return self.email


auditlog.register(CustomUser, exclude_fields=['password', 'last_login'])

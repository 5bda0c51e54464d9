from django.contrib import admin
from .models import CustomUser


@admin.register(CustomUser)
class CustomUserAdmin(admin.ModelAdmin):
    """Compliance staff grant business verification here after reviewing documents."""
    list_display = ('email', 'subscription_tier', 'kyc_status', 'verification_level', 'enhanced_kyc_status', 'is_active')
    list_filter = ('subscription_tier', 'kyc_status', 'verification_level', 'is_staff')
    search_fields = ('email', 'first_name', 'last_name')
    fields = ('email', 'first_name', 'last_name', 'phone_number', 'country', 'is_active', 'is_staff', 'groups',
              'subscription_tier', 'kyc_status', 'verification_level', 'enhanced_kyc_status', 'kyc_verified_at')
    readonly_fields = ('email', 'subscription_tier')

from django.contrib import admin
from .models import Subscription


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ('user', 'tier', 'status', 'cancel_at_period_end', 'current_period_end', 'updated_at')
    list_filter = ('tier', 'status', 'cancel_at_period_end')
    search_fields = ('user__email', 'external_subscription_id', 'external_customer_id')
    readonly_fields = ('external_subscription_id', 'external_customer_id', 'price_reference',
                       'item_reference', 'created_at', 'updated_at')

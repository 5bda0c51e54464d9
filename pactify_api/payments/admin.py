from django.contrib import admin
from .models import ConnectedAccount, WebhookEvent


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    list_display = ('user', 'provider', 'external_account_id', 'transfers_active', 'payouts_enabled', 'last_synced_at')
    list_filter = ('provider', 'transfers_active', 'payouts_enabled')
    search_fields = ('external_account_id', 'user__email')
    readonly_fields = ('requirements_currently_due', 'requirements_past_due', 'requirements_eventually_due',
                       'last_synced_at', 'created_at', 'updated_at')


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('provider', 'event_id', 'event_type', 'received_at')
    list_filter = ('provider', 'event_type')
    search_fields = ('event_id',)

from django.contrib import admin
from .models import Withdrawal


@admin.register(Withdrawal)
class WithdrawalAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'amount', 'currency', 'status', 'payout_reference', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('user__email', 'payout_reference', 'trace_id')
    readonly_fields = ('trace_id', 'created_at', 'updated_at', 'completed_at')

from django.contrib import admin
from .models import Dispute, DisputeMessage


class DisputeMessageInline(admin.TabularInline):
    model = DisputeMessage
    extra = 0
    readonly_fields = ('sender', 'message', 'created_at')


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('id', 'contract', 'initiated_by', 'dispute_type', 'status', 'outcome', 'created_at')
    list_filter = ('status', 'dispute_type', 'outcome')
    search_fields = ('contract__contract_number', 'initiated_by__email', 'description')
    inlines = [DisputeMessageInline]

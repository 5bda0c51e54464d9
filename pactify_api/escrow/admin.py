from django.contrib import admin
from .models import EscrowLedgerEntry


@admin.register(EscrowLedgerEntry)
class EscrowLedgerEntryAdmin(admin.ModelAdmin):
    list_display = ('id', 'contract', 'milestone', 'amount', 'currency', 'status', 'held_at', 'released_at')
    list_filter = ('status', 'currency')
    search_fields = ('contract__contract_number', 'funding_session_ref', 'payment_reference', 'transfer_reference')
    readonly_fields = [field.name for field in EscrowLedgerEntry._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

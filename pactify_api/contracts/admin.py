from django.contrib import admin
from .models import Contract, ContractParty, Milestone, Deliverable


class ContractPartyInline(admin.TabularInline):
    model = ContractParty
    extra = 0
    readonly_fields = ('user', 'role', 'status', 'signature_date')
    exclude = ('signature_data',)


class MilestoneInline(admin.TabularInline):
    model = Milestone
    extra = 0


@admin.register(Contract)
class ContractAdmin(admin.ModelAdmin):
    list_display = ('contract_number', 'title', 'client', 'freelancer', 'total_amount', 'status', 'is_funded', 'created_at')
    list_filter = ('status', 'type', 'is_funded')
    search_fields = ('contract_number', 'title', 'client__email', 'freelancer__email')
    readonly_fields = ('status', 'is_funded', 'funded_at', 'completed_at')
    inlines = [ContractPartyInline, MilestoneInline]


@admin.register(Deliverable)
class DeliverableAdmin(admin.ModelAdmin):
    list_display = ('title', 'contract', 'milestone', 'deliverable_type', 'version', 'is_latest', 'created_at')
    list_filter = ('deliverable_type', 'is_latest')

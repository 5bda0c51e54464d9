from decimal import Decimal

from rest_framework import serializers
from django.contrib.auth import get_user_model

from accounts.serializers import UserSummarySerializer
from .models import Contract, ContractParty, ContractStatus, Milestone, Deliverable
from .lifecycle import validate_milestone_amounts, create_contract


User = get_user_model()


class MilestoneSerializer(serializers.ModelSerializer):
    """
    Serializer for milestone progress.

    Fields (all read-only): id, title, description, amount, status, due_date, order_index,
    submitted_at, approved_at, revision_notes.
    """
    class Meta:
        model = Milestone
        fields = ['id', 'title', 'description', 'amount', 'status', 'due_date', 'order_index',
                  'submitted_at', 'approved_at', 'revision_notes']
        read_only_fields = fields


class MilestoneInputSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    due_date = serializers.DateField(required=False, allow_null=True)
    order_index = serializers.IntegerField(required=False, min_value=0)


class ContractPartySerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)

    class Meta:
        model = ContractParty
        fields = ['id', 'user', 'role', 'status', 'signature_date']
        read_only_fields = fields


class ContractSerializer(serializers.ModelSerializer):
    """
    Read serializer for contracts, embedding parties and milestones.
    """
    client = UserSummarySerializer(read_only=True)
    freelancer = UserSummarySerializer(read_only=True)
    creator = UserSummarySerializer(read_only=True)
    parties = ContractPartySerializer(many=True, read_only=True)
    milestones = MilestoneSerializer(many=True, read_only=True)

    class Meta:
        model = Contract
        fields = ['id', 'contract_number', 'title', 'description', 'total_amount', 'currency', 'type',
                  'status', 'is_funded', 'creator', 'client', 'freelancer', 'parties', 'milestones',
                  'platform_fee_amount', 'processor_fee_amount', 'total_charged_amount',
                  'created_at', 'updated_at', 'funded_at', 'completed_at']
        read_only_fields = fields


class ContractCreateSerializer(serializers.Serializer):
    """
    Serializer for creating a draft contract.

    Fields:
        - title, total_amount, creator_role, counterparty_email (required)
        - description, currency, type, milestones (optional)
    For milestone contracts the milestone amounts must add up to total_amount.
    """
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField(max_length=3, required=False, default='USD')
    type = serializers.ChoiceField(choices=Contract.ContractType.choices, default=Contract.ContractType.FIXED)
    creator_role = serializers.ChoiceField(choices=ContractParty.Role.choices)
    counterparty_email = serializers.EmailField()
    milestones = MilestoneInputSerializer(many=True, required=False)

    def validate_total_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Contract amount must be greater than zero.")
        return value

    def validate_counterparty_email(self, value):
        counterparty = User.objects.filter(email__iexact=value.strip(), is_active=True).first()
        if counterparty is None:
            raise serializers.ValidationError("No active user with this email.")
        return counterparty

    def validate(self, attrs):
        attrs['counterparty'] = attrs.pop('counterparty_email')
        validate_milestone_amounts(attrs.get('type'), attrs.get('total_amount'), attrs.get('milestones') or [])
        return attrs

    def create(self, validated_data):
        return create_contract(self.context['request'].user, validated_data)

    def to_representation(self, instance):
        return ContractSerializer(instance, context=self.context).data


class SignContractSerializer(serializers.Serializer):
    signature_data = serializers.CharField(max_length=200000)


class ContractTransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ContractStatus.choices)


class MilestoneRevisionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class DeliverableSerializer(serializers.ModelSerializer):
    """
    Serializer for deliverable submission and listing.

    Fields:
        - deliverable_type: file | link | text
        - title (max 200), description (max 1000)
        - milestone_id (optional): milestone the work is submitted for
        - link_url / text_content / file_url: required according to deliverable_type
    """
    milestone_id = serializers.IntegerField(required=False, allow_null=True, write_only=True)
    submitted_by = UserSummarySerializer(read_only=True)

    class Meta:
        model = Deliverable
        fields = ['id', 'milestone', 'milestone_id', 'submitted_by', 'deliverable_type', 'title', 'description',
                  'link_url', 'text_content', 'file_url', 'version', 'is_latest', 'created_at']
        read_only_fields = ['id', 'milestone', 'submitted_by', 'version', 'is_latest', 'created_at']

    def validate(self, attrs):
        required_content = {
            Deliverable.DeliverableType.LINK: 'link_url',
            Deliverable.DeliverableType.TEXT: 'text_content',
            Deliverable.DeliverableType.FILE: 'file_url',
        }[attrs['deliverable_type']]
        if not attrs.get(required_content):
            raise serializers.ValidationError({required_content: f"Required for {attrs['deliverable_type']} deliverables."})

        milestone_id = attrs.pop('milestone_id', None)
        attrs['milestone'] = None
        if milestone_id is not None:
            contract = self.context['contract']
            milestone = contract.milestones.filter(pk=milestone_id).first()
            if milestone is None:
                raise serializers.ValidationError({'milestone_id': "Milestone not found on this contract."})
            attrs['milestone'] = milestone
        return attrs

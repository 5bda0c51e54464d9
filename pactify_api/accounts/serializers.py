from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoPasswordValidationError


from .models import CustomUser


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Serializer for user login and token generation.

    Fields:
        - email (required)
        - password (required)
    Rejects deactivated accounts before issuing tokens.
    """
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['email'] = user.email
        token['subscription_tier'] = user.subscription_tier
        return token

    def validate(self, attrs):
        user = CustomUser.objects.filter(email=attrs.get('email')).first()
        if user is not None and not user.is_active:
            raise AuthenticationFailed("Your account is deactivated.")

        return super().validate(attrs)


class RegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Fields :
        required: first_name, last_name, email, password, confirm_password
        optional: phone_number, country
    Validates password confirmation and creates a new user on the free tier.
    """
    password = serializers.CharField(required=True, write_only=True)
    confirm_password = serializers.CharField(required=True, write_only=True)

    class Meta:
        model = CustomUser
        fields = ['id', 'first_name', 'last_name', 'phone_number', 'country', 'email', 'password', 'confirm_password']
        read_only_fields = ['id']
        extra_kwargs = {
            'first_name': {'required': True},
            'last_name': {'required': True},
            'email': {'required': True},
        }

    def validate(self, attrs):
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError("Password do not match.")
        prospective_user = CustomUser(
            email=attrs.get('email'),
            first_name=attrs.get('first_name'),
            last_name=attrs.get('last_name'),
        )

        try:
            validate_password(attrs['password'], user=prospective_user)
        except DjangoPasswordValidationError as exc:
            raise serializers.ValidationError({'password': list(exc.messages)})

        return attrs

    def create(self, validated_data):
        validated_data.pop('confirm_password')
        return CustomUser.objects.create_user(**validated_data)


class UserProfileSerializer(serializers.ModelSerializer):
    """
    Serializer for user profile retrieval and updates.

    Subscription and verification attributes are read-only here; they change through
    billing and KYC flows, never through a profile edit.
    """
    class Meta:
        model = CustomUser
        fields = (
            'id', 'first_name', 'last_name', 'email', 'phone_number', 'country',
            'subscription_tier', 'kyc_status', 'verification_level', 'enhanced_kyc_status',
            'kyc_verified_at',
        )
        read_only_fields = (
            'id', 'email', 'subscription_tier', 'kyc_status', 'verification_level',
            'enhanced_kyc_status', 'kyc_verified_at',
        )


class UserSummarySerializer(serializers.ModelSerializer):
    """Lightweight user reference embedded in contract, dispute and ledger payloads."""
    class Meta:
        model = CustomUser
        fields = ['id', 'first_name', 'last_name', 'email']
        read_only_fields = fields

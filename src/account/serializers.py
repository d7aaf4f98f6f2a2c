from django.contrib.auth import get_user_model
from rest_framework import serializers

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            'id',
            'email',
            'full_name',
            'phone',
            'language',
            'currency',
            'is_verified',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class SignupSerializer(serializers.Serializer):
    full_name = serializers.CharField(min_length=2, max_length=150)
    email = serializers.EmailField()
    phone = serializers.CharField(min_length=8, max_length=32)
    password = serializers.CharField(min_length=6, write_only=True)
    confirm_password = serializers.CharField(write_only=True)
    privacy_accepted = serializers.BooleanField()
    language = serializers.ChoiceField(choices=User.LANGUAGE_CHOICES, required=False)
    currency = serializers.ChoiceField(choices=User.CURRENCY_CHOICES, required=False)

    def validate_email(self, value):
        return value.strip().lower()

    def validate_privacy_accepted(self, value):
        if value is not True:
            raise serializers.ValidationError("You must accept privacy policy")
        return value

    def validate(self, attrs):
        if attrs.get('password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({'confirm_password': "Passwords don't match"})
        return attrs


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate_email(self, value):
        return value.strip().lower()


class PasswordResetRequestSerializer(serializers.Serializer):
    email = serializers.EmailField()

    def validate_email(self, value):
        return value.strip().lower()


class PasswordResetConfirmSerializer(serializers.Serializer):
    token = serializers.CharField()
    new_password = serializers.CharField(min_length=6, write_only=True)
    confirm_password = serializers.CharField(write_only=True)

    def validate(self, attrs):
        if attrs.get('new_password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({'confirm_password': "Passwords don't match"})
        return attrs


class ChangePasswordSerializer(PasswordResetConfirmSerializer):
    token = None
    current_password = serializers.CharField(write_only=True)


class ProfileSerializer(serializers.ModelSerializer):
    """Only these profile fields may be changed by the user."""
    full_name = serializers.CharField(min_length=2, max_length=150, required=False)
    phone = serializers.CharField(min_length=8, max_length=32, required=False)

    class Meta:
        model = User
        fields = ['full_name', 'phone', 'language', 'currency']


class TokenSerializer(serializers.Serializer):
    token = serializers.CharField()


class RefreshTokenSerializer(serializers.Serializer):
    refresh = serializers.CharField()


class DeleteAccountSerializer(serializers.Serializer):
    password = serializers.CharField(write_only=True)

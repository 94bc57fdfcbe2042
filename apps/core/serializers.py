"""
Serializers for authentication and user roles.
"""

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """User with the role taken from its operator profile."""

    role = serializers.CharField(source='operator_profile.role', read_only=True, default='viewer')

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'is_active', 'last_login', 'role']
        read_only_fields = fields


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Token serializer that includes user info in the response.
    """

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username

        if hasattr(user, 'operator_profile'):
            token['role'] = user.operator_profile.role

        return token

    def validate(self, attrs):
        data = super().validate(attrs)
        data['user'] = UserSerializer(self.user).data
        return data

"""
Serializers for user identity as exposed by the chat API.
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Compact user representation embedded in chat payloads.

    Fields:
        id: User id (the value carried as sender/counterpart ids)
        email: Login email
        display_name: Profile full name, falling back to email
    """

    display_name = serializers.CharField(source="get_full_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "email", "display_name"]
        read_only_fields = fields

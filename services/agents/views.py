from rest_framework import mixins, permissions, viewsets

from .models import Agent
from .serializers import AgentSerializer


class AgentViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    The agent roster. Agents are only added here; calls reference them.
    """

    serializer_class = AgentSerializer
    permission_classes = [permissions.IsAuthenticated]
    queryset = Agent.objects.all()

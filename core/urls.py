from django.contrib import admin
from django.urls import path, include
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.routers import DefaultRouter

from services.agents.views import AgentViewSet
from services.calls.views import CallRecordViewSet, DashboardView


@api_view(["GET"])
@permission_classes([AllowAny])
def ping(request):
    return Response({"status": "ok", "message": "callqa backend is alive"})

router = DefaultRouter()
router.register("calls", CallRecordViewSet, basename="call")
router.register("agents", AgentViewSet, basename="agent")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/ping/", ping),
    path("api/dashboard/", DashboardView.as_view(), name="dashboard"),
    path("api/", include(router.urls)),
]

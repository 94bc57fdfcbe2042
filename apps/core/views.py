"""
Health check, metrics and authentication views.
"""

from django.http import HttpResponse, JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from apps.core.metrics import render_latest
from apps.core.observability import health_checker, HealthStatus
from apps.core.serializers import CustomTokenObtainPairSerializer, UserSerializer


@method_decorator(csrf_exempt, name='dispatch')
class HealthCheckView(View):
    """
    Health check endpoint.

    GET /health/ - Run all health checks
    GET /health/<check_name>/ - Run specific health check
    """

    def get(self, request, check_name=None):
        if check_name:
            result = health_checker.check(check_name)
            status_code = 200 if result.status == HealthStatus.HEALTHY else 503
            return JsonResponse(result.to_dict(), status=status_code)

        results = health_checker.check_all()
        status_code = 200 if results["status"] != "unhealthy" else 503
        return JsonResponse(results, status=status_code)


@method_decorator(csrf_exempt, name='dispatch')
class LivenessView(View):
    """
    Liveness probe.

    Reports whether the intake loop is alive (recent beat heartbeat),
    independent of any individual discovery run.
    """

    def get(self, request):
        result = health_checker.check("intake")
        if result.status == HealthStatus.HEALTHY:
            return JsonResponse({"status": "ok", "intake": result.details})
        return JsonResponse({
            "status": "unavailable",
            "reason": result.message,
        }, status=503)


@method_decorator(csrf_exempt, name='dispatch')
class ReadinessView(View):
    """
    Readiness probe.

    Returns 200 if the database is reachable.
    """

    def get(self, request):
        db_check = health_checker.check("database")

        if db_check.status == HealthStatus.HEALTHY:
            return JsonResponse({"status": "ready"})
        return JsonResponse({
            "status": "not_ready",
            "reason": db_check.message,
        }, status=503)


@method_decorator(csrf_exempt, name='dispatch')
class MetricsView(View):
    """Prometheus scrape endpoint."""

    def get(self, request):
        payload, content_type = render_latest()
        return HttpResponse(payload, content_type=content_type)


# =============================================================================
# JWT Authentication Views
# =============================================================================

class CustomTokenObtainPairView(TokenObtainPairView):
    """
    Login endpoint that returns JWT tokens.

    POST /api/auth/login/
    Body: {"username": "...", "password": "..."}
    """
    serializer_class = CustomTokenObtainPairSerializer
    permission_classes = [AllowAny]


class CustomTokenRefreshView(TokenRefreshView):
    permission_classes = [AllowAny]


class CurrentUserView(APIView):
    """GET /api/auth/me/ - current user and role."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)

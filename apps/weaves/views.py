"""
API views for weave discovery.

Plexus-scoped endpoints (mounted at /api/plexus/):
    POST /api/plexus/{id}/weaves/run/      - submit a discovery run
    GET  /api/plexus/{id}/weaves/status/   - most recent run
    GET  /api/plexus/{id}/weaves/runs/     - run history
    GET  /api/plexus/{id}/weaves/          - weaves (?run=&type=&min_score=)
    POST /api/plexus/{id}/reset/           - delete discovery data (admin)

Run endpoints (mounted at /api/weaves/):
    GET  /api/weaves/runs/{id}/            - run status
    POST /api/weaves/runs/{id}/cancel/     - request cancellation
    GET  /api/weaves/runs/{id}/events/     - run event log
"""

import logging

from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ErrorCode, error_response
from apps.core.permissions import IsAdmin, IsOperator
from apps.core.throttling import DestructiveActionThrottle, WeaveTriggerThrottle

from . import services
from .intake import submit_discovery
from .serializers import (
    DiscoveryRunEventSerializer,
    DiscoveryRunSerializer,
    ResetSerializer,
    RunTriggerSerializer,
    WeaveSerializer,
)

logger = logging.getLogger(__name__)


class RunTriggerView(APIView):
    """
    Submit a discovery run for a plexus.

    POST /api/plexus/{id}/weaves/run/
    Body: {"fresh": false, "score_threshold": 0.6}

    202 with the new run, or 200 with `coalesced: true` when a run is
    already pending or running for the plexus.
    """
    permission_classes = [IsAuthenticated, IsOperator]
    throttle_classes = [WeaveTriggerThrottle]

    def post(self, request, plexus_id):
        plexus = services.get_plexus(plexus_id)

        serializer = RunTriggerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        overrides = {}
        if data.get('score_threshold') is not None:
            overrides['score_threshold'] = data['score_threshold']

        result = submit_discovery(
            plexus.id,
            triggered_by='api',
            fresh=data.get('fresh', False),
            config_overrides=overrides,
        )
        run = result.run
        run.refresh_from_db()

        logger.info(
            f"Discovery submission by {request.user.username} for plexus {plexus.id}: "
            f"run {run.id} (created={result.created}, coalesced={result.coalesced})"
        )

        payload = DiscoveryRunSerializer(run).data
        payload.update({
            'run_id': str(run.id),
            'created': result.created,
            'coalesced': result.coalesced,
            'resumed': result.resumed,
        })
        return Response(
            payload,
            status=status.HTTP_202_ACCEPTED if result.created else status.HTTP_200_OK,
        )


class PlexusRunStatusView(APIView):
    """GET /api/plexus/{id}/weaves/status/ - most recent run for the plexus."""
    permission_classes = [IsAuthenticated]

    def get(self, request, plexus_id):
        plexus = services.get_plexus(plexus_id)
        run = services.latest_run(plexus)
        if run is None:
            return Response({'plexus_id': str(plexus.id), 'status': 'idle', 'run': None})
        return Response({
            'plexus_id': str(plexus.id),
            'status': run.status,
            'run': DiscoveryRunSerializer(run).data,
        })


class PlexusRunListView(generics.ListAPIView):
    """GET /api/plexus/{id}/weaves/runs/ - run history, newest first."""
    permission_classes = [IsAuthenticated]
    serializer_class = DiscoveryRunSerializer

    def get_queryset(self):
        plexus = services.get_plexus(self.kwargs['plexus_id'])
        queryset = plexus.discovery_runs.all()

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-created_at')


class WeaveListView(generics.ListAPIView):
    """GET /api/plexus/{id}/weaves/?run=&type=&min_score="""
    permission_classes = [IsAuthenticated]
    serializer_class = WeaveSerializer

    def get_queryset(self):
        plexus = services.get_plexus(self.kwargs['plexus_id'])
        params = self.request.query_params
        return services.filter_weaves(
            plexus,
            run_id=params.get('run'),
            weave_type=params.get('type'),
            min_score=params.get('min_score'),
        )


class PlexusResetView(APIView):
    """
    Delete a plexus's weaves, discovery runs and repo glossaries.

    POST /api/plexus/{id}/reset/
    Body: {"cancel_wait": 0}

    409 while a run is active unless `cancel_wait` lets it stop first.
    """
    permission_classes = [IsAuthenticated, IsAdmin]
    throttle_classes = [DestructiveActionThrottle]

    def post(self, request, plexus_id):
        plexus = services.get_plexus(plexus_id)

        serializer = ResetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        deleted = services.reset_plexus_data(
            plexus, cancel_wait=serializer.validated_data.get('cancel_wait', 0)
        )
        logger.info(f"Plexus {plexus.id} data reset by {request.user.username}: {deleted}")
        return Response({'plexus_id': str(plexus.id), 'deleted': deleted})


class RunDetailView(APIView):
    """GET /api/weaves/runs/{id}/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        run = services.get_run(pk)
        return Response(DiscoveryRunSerializer(run).data)


class RunCancelView(APIView):
    """
    Request cancellation of a discovery run.

    POST /api/weaves/runs/{id}/cancel/

    Pending runs are cancelled at once. Running runs finish their in-flight
    pairs first, so the response may still say `running`.
    """
    permission_classes = [IsAuthenticated, IsOperator]
    throttle_classes = [DestructiveActionThrottle]

    def post(self, request, pk):
        run = services.get_run(pk)

        if run.is_terminal:
            return error_response(
                ErrorCode.INVALID_TRANSITION,
                f"Cannot cancel run in {run.status} status",
                status_code=status.HTTP_409_CONFLICT,
                details={"run_id": str(run.id), "status": run.status},
            )

        run = services.request_cancel(run, reason=f"Cancelled by {request.user.username}")
        return Response(DiscoveryRunSerializer(run).data, status=status.HTTP_202_ACCEPTED)


class RunEventListView(generics.ListAPIView):
    """GET /api/weaves/runs/{id}/events/?event_type="""
    permission_classes = [IsAuthenticated]
    serializer_class = DiscoveryRunEventSerializer

    def get_queryset(self):
        run = services.get_run(self.kwargs['pk'])
        queryset = run.events.all()

        event_type = self.request.query_params.get('event_type')
        if event_type:
            queryset = queryset.filter(event_type=event_type)

        return queryset.order_by('created_at')

"""
URL patterns for the weave discovery API.

`urlpatterns` is mounted at /api/weaves/; `plexus_urlpatterns` at
/api/plexus/ in the project urls.
"""

from django.urls import path

from .views import (
    PlexusResetView,
    PlexusRunListView,
    PlexusRunStatusView,
    RunCancelView,
    RunDetailView,
    RunEventListView,
    RunTriggerView,
    WeaveListView,
)

app_name = 'weaves'

urlpatterns = [
    path('runs/<uuid:pk>/', RunDetailView.as_view(), name='run-detail'),
    path('runs/<uuid:pk>/cancel/', RunCancelView.as_view(), name='run-cancel'),
    path('runs/<uuid:pk>/events/', RunEventListView.as_view(), name='run-events'),
]

plexus_urlpatterns = [
    path('<uuid:plexus_id>/weaves/run/', RunTriggerView.as_view(), name='weave-run'),
    path('<uuid:plexus_id>/weaves/status/', PlexusRunStatusView.as_view(), name='weave-status'),
    path('<uuid:plexus_id>/weaves/runs/', PlexusRunListView.as_view(), name='weave-runs'),
    path('<uuid:plexus_id>/weaves/', WeaveListView.as_view(), name='weave-list'),
    path('<uuid:plexus_id>/reset/', PlexusResetView.as_view(), name='reset'),
]

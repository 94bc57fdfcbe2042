"""
URL configuration for the Symploke engine.
"""

from django.contrib import admin
from django.urls import path, include

from apps.core.urls import auth_urlpatterns
from apps.weaves.urls import plexus_urlpatterns

urlpatterns = [
    path('admin/', admin.site.urls),
    # Auth endpoints
    path('api/auth/', include((auth_urlpatterns, 'auth'))),
    # Plexus-scoped discovery endpoints (run, status, weaves, reset)
    path('api/plexus/', include((plexus_urlpatterns, 'plexus-weaves'))),
    # Discovery runs
    path('api/weaves/', include('apps.weaves.urls')),
    # Observability endpoints
    path('', include('apps.core.urls')),
]

# Customize admin site
admin.site.site_header = "Symploke Administration"
admin.site.site_title = "Symploke Admin Portal"
admin.site.index_title = "Weave Discovery Engine"

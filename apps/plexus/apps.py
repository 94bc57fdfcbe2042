from django.apps import AppConfig


class PlexusConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.plexus'
    verbose_name = 'Plexuses & Repositories'

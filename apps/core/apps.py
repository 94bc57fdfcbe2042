from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """Register health checks once the app registry is loaded."""
        from apps.core.observability import register_default_checks
        register_default_checks()

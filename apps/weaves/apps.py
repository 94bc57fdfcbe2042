from django.apps import AppConfig


class WeavesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.weaves'
    verbose_name = 'Weave Discovery'

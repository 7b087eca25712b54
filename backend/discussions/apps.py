"""
Discussions App Configuration
"""
from django.apps import AppConfig


class DiscussionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'discussions'
    verbose_name = 'Legal Discussions'

    def ready(self):
        # Import signals when app is ready
        import discussions.signals  # noqa

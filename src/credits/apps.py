from django.apps import AppConfig
import logging
logger = logging.getLogger('credits')


class CreditsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'credits'

    def ready(self):
        # signals create the zero-balance row for every new user
        from . import signals  # noqa: F401
        logger.debug("credits app ready(): signal handlers registered")

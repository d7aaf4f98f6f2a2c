import os
import logging
from django.apps import AppConfig
from django.db.utils import OperationalError
from dotenv import load_dotenv


class AccountConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'account'

    def ready(self):
        # Load environment variables from .env file
        load_dotenv()

        from django.db.models.signals import post_migrate

        post_migrate.connect(create_root_user, sender=self, dispatch_uid="account.create_root_user")


def create_root_user(sender, **kwargs):
    """Create the operator superuser from ROOT_EMAIL / ROOT_PASSWORD after migrations."""
    from django.contrib.auth import get_user_model

    logger = logging.getLogger('account')
    email = os.getenv("ROOT_EMAIL", "").strip().lower()
    password = os.getenv("ROOT_PASSWORD", "")
    if not email or not password:
        logger.debug("create_root_user: ROOT_EMAIL/ROOT_PASSWORD not set, skipping")
        return

    User = get_user_model()
    try:
        if User.objects.filter(email=email).exists():
            return
        User.objects.create_superuser(email=email, password=password, full_name="Root")
        logger.info("create_root_user: created superuser %s", email)
    except OperationalError as oe:
        # Database might not be ready yet; log and continue so operator can retry/migrate
        logger.warning("create_root_user: DB not ready, skipping root creation: %s", oe)

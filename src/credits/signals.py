from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver
import logging
logger = logging.getLogger('credits')

from .models import Credits


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_credits_row(sender, instance, created, **kwargs):
    """Every new user starts with a zero balance."""
    if not created:
        return
    Credits.objects.get_or_create(user=instance)
    logger.debug("signals: created credits row for user id=%s", instance.pk)

# portfolio/app/series/signals.py
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from images.relationships import get_engine, SERIES
from .models import Series


@receiver(post_save, sender=Series)
@receiver(post_delete, sender=Series)
def invalidate_series(sender, instance, **kwargs):
    # Covers admin edits and imports that bypass the engine.
    if kwargs.get('raw'):
        return
    get_engine().invalidate(SERIES)

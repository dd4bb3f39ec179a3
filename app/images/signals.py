# portfolio/app/images/signals.py
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from .models import MediaImage, ImageCategory
from .relationships import get_engine, CATEGORIES, IMAGES, SERIES


@receiver(post_save, sender=MediaImage)
def image_saved(sender, instance, created, raw=False, **kwargs):
    """
    Any saved image (upload, admin form, import) drops cached image lists and
    the series pages that embed it. A new image also recounts its category;
    edits through RelationshipEngine.update_image or the admin recount there.
    """
    if raw:
        return

    engine = get_engine()
    if created and instance.category_id:
        engine.sync_category_counts(instance.category_id)
    engine.invalidate(IMAGES, SERIES)


@receiver(post_delete, sender=MediaImage)
def image_deleted(sender, instance, **kwargs):
    get_engine().invalidate(IMAGES, SERIES, CATEGORIES)


@receiver(post_save, sender=ImageCategory)
@receiver(post_delete, sender=ImageCategory)
def invalidate_categories(sender, instance, **kwargs):
    """Category names are embedded in image and series payloads too."""
    if kwargs.get('raw'):
        return
    get_engine().invalidate(CATEGORIES, IMAGES, SERIES)

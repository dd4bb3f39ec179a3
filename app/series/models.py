# portfolio/app/series/models.py
from django.db import models

from images.models import unique_slugify


class Series(models.Model):
    class SeriesStatus(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        PUBLISHED = 'published', 'Published'

    title = models.CharField(max_length=100)
    slug = models.SlugField(max_length=110, unique=True, blank=True, help_text="Leave blank to auto-generate from title.")
    description = models.TextField(max_length=1000, blank=True, default='')

    # Ordered primary keys of member images. MediaImage.series mirrors this list.
    image_ids = models.JSONField(default=list, blank=True, editable=False)
    cover_image = models.ForeignKey(
        'images.MediaImage',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='covers'
    )
    category = models.ForeignKey(
        'images.ImageCategory',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='series'
    )
    order = models.IntegerField(default=0)
    featured = models.BooleanField(default=False)
    status = models.CharField(max_length=10, choices=SeriesStatus.choices, default=SeriesStatus.DRAFT)
    views = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-featured', 'order', '-created_at']
        verbose_name_plural = "Series"

    def __str__(self):
        return self.title

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = unique_slugify(self, self.title)
        super().save(*args, **kwargs)

    @property
    def image_count(self):
        return len(self.image_ids or [])

    def has_image(self, image_id):
        return int(image_id) in self.image_ids

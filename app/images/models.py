# portfolio/app/images/models.py
from django.db import models
from django.utils.text import slugify


def unique_slugify(instance, value, slug_field='slug'):
    """
    Slugifies `value` and appends -1, -2, ... until no other row of the
    same model uses it.
    """
    base_slug = slugify(value) or 'untitled'
    slug = base_slug
    counter = 1
    manager = type(instance)._default_manager
    while manager.filter(**{slug_field: slug}).exclude(pk=instance.pk).exists():
        slug = f'{base_slug}-{counter}'
        counter += 1
    return slug


class ImageCategory(models.Model):
    name = models.CharField(max_length=50, unique=True)
    slug = models.SlugField(max_length=60, unique=True, blank=True)
    description = models.TextField(max_length=500, blank=True, default='')
    order = models.IntegerField(default=0)
    # Denormalised count of published images; rebuilt by the relationship engine.
    image_count = models.PositiveIntegerField(default=0, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = unique_slugify(self, self.name)
        super().save(*args, **kwargs)

    class Meta:
        ordering = ['order', 'name']
        verbose_name = "Image Category"
        verbose_name_plural = "Image Categories"


class MediaImage(models.Model):
    class ImageStatus(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        PUBLISHED = 'published', 'Published'
        ARCHIVED = 'archived', 'Archived'

    title = models.CharField(max_length=200, help_text="e.g., 'Fog over the harbour'")
    description = models.TextField(max_length=2000, blank=True, default='')
    image = models.ImageField(upload_to='portfolio/', blank=True)
    alt_text = models.CharField(max_length=255, blank=True, help_text="Accessibility text for screen readers.")
    category = models.ForeignKey(
        ImageCategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="images"
    )
    # Back-reference of Series.image_ids. Only the relationship engine writes it.
    series = models.ForeignKey(
        'series.Series',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="member_images"
    )
    featured = models.BooleanField(default=False)
    order = models.IntegerField(default=0, help_text="Position hint within a series.")
    views = models.PositiveIntegerField(default=0)
    likes = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, choices=ImageStatus.choices, default=ImageStatus.PUBLISHED)
    uploaded_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.title

    @property
    def is_published(self):
        return self.status == self.ImageStatus.PUBLISHED

    @property
    def url(self):
        return self.image.url if self.image else None

    class Meta:
        ordering = ['-uploaded_at']
        indexes = [
            models.Index(fields=['status', 'category']),
            models.Index(fields=['status', 'featured', 'order']),
            models.Index(fields=['status', 'series', 'order']),
        ]

# portfolio/app/images/resources.py
from import_export import resources, fields
from import_export.widgets import ForeignKeyWidget
from .models import ImageCategory, MediaImage
from .relationships import get_engine, IMAGES, SERIES


class ImageCategoryResource(resources.ModelResource):
    # Rebuilt from the images, never imported.
    image_count = fields.Field(attribute='image_count', column_name='image_count', readonly=True)

    class Meta:
        model = ImageCategory
        import_id_fields = ['slug']
        fields = ('id', 'name', 'slug', 'description', 'order', 'image_count')
        export_order = ('id', 'name', 'slug', 'description', 'order', 'image_count')
        skip_unchanged = True
        report_skipped = True


class MediaImageResource(resources.ModelResource):
    category = fields.Field(
        column_name='category',
        attribute='category',
        widget=ForeignKeyWidget(ImageCategory, field='slug')
    )
    series = fields.Field(column_name='series', readonly=True)

    class Meta:
        model = MediaImage
        fields = ('id', 'title', 'alt_text', 'category', 'series', 'featured', 'status', 'views', 'likes', 'uploaded_at')
        export_order = ('id', 'title', 'alt_text', 'category', 'series', 'featured', 'status', 'views', 'likes', 'uploaded_at')

    def dehydrate_series(self, image):
        return image.series.slug if image.series else ''

    def after_import(self, dataset, result, **kwargs):
        # Imported rows bypass the engine; dry runs are rolled back with the transaction.
        engine = get_engine()
        engine.sync_category_counts(*ImageCategory.objects.values_list('pk', flat=True))
        engine.invalidate(IMAGES, SERIES)

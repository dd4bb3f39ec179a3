# portfolio/app/images/admin.py
from django.contrib import admin
from import_export.admin import ImportExportMixin

from .models import MediaImage, ImageCategory
from .relationships import get_engine
from .resources import ImageCategoryResource, MediaImageResource


@admin.register(ImageCategory)
class ImageCategoryAdmin(ImportExportMixin, admin.ModelAdmin):
    resource_class = ImageCategoryResource
    list_display = ('name', 'slug', 'order', 'image_count')
    readonly_fields = ('image_count',)
    prepopulated_fields = {'slug': ('name',)}
    actions = ['recount_images']

    def delete_model(self, request, obj):
        get_engine().delete_category(obj.pk)

    def delete_queryset(self, request, queryset):
        engine = get_engine()
        for pk in list(queryset.values_list('pk', flat=True)):
            engine.delete_category(pk)

    @admin.action(description='Recount published images')
    def recount_images(self, request, queryset):
        engine = get_engine()
        for category in queryset:
            engine.recompute_category_count(category.pk)
        self.message_user(request, f"Recounted {queryset.count()} categories.")


@admin.register(MediaImage)
class MediaImageAdmin(ImportExportMixin, admin.ModelAdmin):
    resource_class = MediaImageResource
    list_display = ('id', 'title', 'category', 'series', 'status', 'featured', 'views', 'likes', 'uploaded_at')
    list_filter = ('status', 'featured', 'category')
    search_fields = ('title', 'alt_text')
    # Membership is edited from the series pages so both sides stay in sync.
    readonly_fields = ('series', 'views', 'likes')

    def save_model(self, request, obj, form, change):
        previous = MediaImage.objects.filter(pk=obj.pk).values('category_id', 'status').first() if change else None
        super().save_model(request, obj, form, change)
        if previous and (previous['category_id'] != obj.category_id or previous['status'] != obj.status):
            get_engine().sync_category_counts(previous['category_id'], obj.category_id)

    def delete_model(self, request, obj):
        get_engine().delete_image(obj.pk)

    def delete_queryset(self, request, queryset):
        engine = get_engine()
        for pk in list(queryset.values_list('pk', flat=True)):
            engine.delete_image(pk)

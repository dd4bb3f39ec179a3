# portfolio/app/series/admin.py
from django.contrib import admin

from images.relationships import get_engine
from .models import Series


@admin.register(Series)
class SeriesAdmin(admin.ModelAdmin):
    list_display = ('title', 'slug', 'status', 'featured', 'image_count', 'cover_image', 'views')
    list_filter = ('status', 'featured', 'category')
    search_fields = ('title', 'slug')
    prepopulated_fields = {'slug': ('title',)}
    readonly_fields = ('image_ids', 'views')
    # cover_image is validated against the members by the engine; pick it via the API.
    exclude = ('cover_image',)
    actions = ['repair_membership']

    def delete_model(self, request, obj):
        get_engine().delete_series(obj.pk)

    def delete_queryset(self, request, queryset):
        engine = get_engine()
        for pk in list(queryset.values_list('pk', flat=True)):
            engine.delete_series(pk)

    @admin.action(description='Repair image membership')
    def repair_membership(self, request, queryset):
        engine = get_engine()
        fixed = 0
        for series in queryset:
            report = engine.repair(series_id=series.pk)
            fixed += len(report['dropped']) + len(report['relinked']) + len(report['released'])
        self.message_user(request, f"Repaired {fixed} membership link(s).")

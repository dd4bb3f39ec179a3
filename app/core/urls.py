# portfolio/app/core/urls.py

from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from . import views as core_views

handler403 = 'core.views.handler403'

urlpatterns = [
    # Admin URL should be specific and is often placed first
    path('admin/', admin.site.urls),

    path('manage/cache/', core_views.api_cache_stats, name='api_cache_stats'),
    path('manage/cache/clear/', core_views.api_cache_clear, name='api_cache_clear'),

    path('images/', include('images.urls', namespace='images')),
    path('series/', include('series.urls', namespace='series')),
]

# Add static and media file serving for development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

# portfolio/app/series/urls.py
from django.urls import path
from . import views

app_name = 'series'

urlpatterns = [
    path('api/series/', views.ajax_get_series_list, name='ajax_get_series_list'),
    path('api/series/<slug:slug>/', views.ajax_get_series, name='ajax_get_series'),

    # Staff endpoints
    path('api/create-series/', views.ajax_create_series, name='ajax_create_series'),
    path('api/edit-series/<int:series_id>/', views.ajax_edit_series, name='ajax_edit_series'),
    path('api/delete-series/<int:series_id>/', views.ajax_delete_series, name='ajax_delete_series'),
    path('api/series/<int:series_id>/images/<int:image_id>/add/', views.ajax_add_image, name='ajax_add_image'),
    path('api/series/<int:series_id>/images/<int:image_id>/remove/', views.ajax_remove_image, name='ajax_remove_image'),
    path('api/series/<int:series_id>/reorder/', views.ajax_reorder_images, name='ajax_reorder_images'),
    path('api/series/<int:series_id>/cover/', views.ajax_set_cover, name='ajax_set_cover'),
]

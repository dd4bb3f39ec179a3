# portfolio/app/images/urls.py
from django.urls import path
from . import views

app_name = 'images'

urlpatterns = [
    # Public read endpoints
    path('api/images/', views.ajax_get_images, name='ajax_get_images'),
    path('api/images/featured/', views.ajax_featured_images, name='ajax_featured_images'),
    path('api/images/<int:image_id>/', views.ajax_get_image, name='ajax_get_image'),
    path('api/images/<int:image_id>/like/', views.ajax_like_image, name='ajax_like_image'),
    path('api/categories/', views.ajax_get_categories, name='ajax_get_categories'),
    path('api/categories/<slug:slug>/', views.ajax_get_category, name='ajax_get_category'),

    # Staff endpoints
    path('api/upload-image/', views.ajax_upload_image, name='ajax_upload_image'),
    path('api/edit-image/<int:image_id>/', views.ajax_edit_image, name='ajax_edit_image'),
    path('api/delete-image/<int:image_id>/', views.ajax_delete_image, name='ajax_delete_image'),
    path('api/create-category/', views.ajax_create_category, name='ajax_create_category'),
    path('api/edit-category/<int:category_id>/', views.ajax_edit_category, name='ajax_edit_category'),
    path('api/delete-category/<int:category_id>/', views.ajax_delete_category, name='ajax_delete_category'),
    path('api/recount-category/<int:category_id>/', views.ajax_recount_category, name='ajax_recount_category'),
]

# portfolio/app/images/views.py
import json
import os
import logging
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.paginator import Paginator
from django.db.models import F
from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST
from django_ratelimit.decorators import ratelimit

from core.cache import cache_key
from core.views import staff_required, load_payload
from .exceptions import RelationshipError
from .forms import ImageUploadForm, ImageEditForm, CategoryForm
from .models import MediaImage, ImageCategory
from .relationships import get_engine, IMAGES, CATEGORIES

logger = logging.getLogger(__name__)


def serialize_image(img):
    return {
        'id': img.id,
        'title': img.title,
        'description': img.description,
        'url': img.url,
        'alt_text': img.alt_text,
        'category_id': img.category_id,
        'category_name': img.category.name if img.category else 'Uncategorized',
        'series_id': img.series_id,
        'featured': img.featured,
        'order': img.order,
        'likes': img.likes,
        'status': img.status,
    }


def serialize_category(category):
    return {
        'id': category.id,
        'name': category.name,
        'slug': category.slug,
        'description': category.description,
        'order': category.order,
        'image_count': category.image_count,
    }


def engine_error_response(error, operation):
    """Maps a RelationshipError to a JSON error response with its status code."""
    if error.status_code >= 500:
        logger.error(f"Error in {operation}: {error}", exc_info=True)
    else:
        logger.warning(f"{operation} rejected: {error}")
    return JsonResponse({'success': False, 'error': str(error)}, status=error.status_code)


def is_staff(request):
    return request.user.is_authenticated and request.user.is_staff


def bound_form(form_class, data, instance):
    """
    Binds a ModelForm for a partial update: fields missing from the payload
    keep the instance's current values.
    """
    current = model_to_dict(instance, fields=form_class._meta.fields)
    current.update({k: v for k, v in data.items() if k in form_class._meta.fields})
    return form_class(current, instance=instance)


def form_errors(form):
    return '. '.join([' '.join(errors) for errors in form.errors.values()]) or 'Invalid data.'


# --- Images ---

@require_GET
def ajax_get_images(request):
    """
    Returns a page of images, optionally filtered by category slug, series
    slug, featured flag or a title search. Non-staff callers only ever see
    published images.
    """
    staff = is_staff(request)
    params = {
        'category': request.GET.get('category', ''),
        'series': request.GET.get('series', ''),
        'featured': request.GET.get('featured', ''),
        'q': request.GET.get('q', '').strip(),
        'status': request.GET.get('status', '') if staff else MediaImage.ImageStatus.PUBLISHED,
        'page': request.GET.get('page', '1'),
    }

    def build():
        images_query = MediaImage.objects.select_related('category')
        if params['status']:
            images_query = images_query.filter(status=params['status'])
        if params['category']:
            images_query = images_query.filter(category__slug=params['category'])
        if params['series']:
            images_query = images_query.filter(series__slug=params['series'])
        if params['featured'] in ('1', 'true'):
            images_query = images_query.filter(featured=True)
        if params['q']:
            images_query = images_query.filter(title__icontains=params['q'])

        paginator = Paginator(images_query, settings.PORTFOLIO_PAGE_SIZE)
        page = paginator.get_page(params['page'])
        return {
            'images': [serialize_image(img) for img in page.object_list],
            'page': page.number,
            'num_pages': paginator.num_pages,
            'total': paginator.count,
        }

    data = get_engine().cache.get_or_set(cache_key(IMAGES, 'list', staff=staff, **params), build)
    return JsonResponse({'success': True, **data})


@require_GET
def ajax_featured_images(request):
    try:
        limit = max(1, min(int(request.GET.get('limit', 10)), 50))
    except ValueError:
        limit = 10

    def build():
        images = MediaImage.objects.filter(
            featured=True, status=MediaImage.ImageStatus.PUBLISHED
        ).select_related('category').order_by('order', '-uploaded_at')[:limit]
        return [serialize_image(img) for img in images]

    images = get_engine().cache.get_or_set(cache_key(IMAGES, 'featured', limit=limit), build)
    return JsonResponse({'success': True, 'images': images})


@require_GET
def ajax_get_image(request, image_id):
    """
    Single image. Viewing bumps the view counter, so this response is
    never cached.
    """
    queryset = MediaImage.objects.select_related('category', 'series')
    if not is_staff(request):
        queryset = queryset.filter(status=MediaImage.ImageStatus.PUBLISHED)
    image = get_object_or_404(queryset, pk=image_id)

    MediaImage.objects.filter(pk=image.pk).update(views=F('views') + 1)
    image.views += 1

    data = serialize_image(image)
    data['views'] = image.views
    data['series_title'] = image.series.title if image.series else None
    return JsonResponse({'success': True, 'image': data})


@staff_required
@require_POST
def ajax_upload_image(request):
    """
    Handles image uploads from the gallery modal.
    Resizes and converts images to WebP on-the-fly.
    """
    form = ImageUploadForm(request.POST, request.FILES)

    if not form.is_valid():
        return JsonResponse({'success': False, 'errors': form_errors(form)}, status=400)

    uploaded_files = request.FILES.getlist('images')
    base_title = form.cleaned_data.get('title', '').strip()
    alt_text = form.cleaned_data.get('alt_text', '')
    category = form.cleaned_data.get('category')
    status = form.cleaned_data.get('status')

    created_images = []

    for i, uploaded_file in enumerate(uploaded_files, 1):
        try:
            img = Image.open(uploaded_file)
            img.thumbnail(settings.PORTFOLIO_UPLOAD_MAX_SIZE, Image.Resampling.LANCZOS)
            if img.mode not in ('RGB', 'RGBA'):
                img = img.convert('RGB')
            output_buffer = BytesIO()
            img.save(output_buffer, format='WEBP', quality=85)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"[ajax_upload_image] Rejected {uploaded_file.name}: {e}")
            return JsonResponse({'success': False, 'error': f"'{uploaded_file.name}' is not a valid image."}, status=400)

        output_buffer.seek(0)
        new_file_content = ContentFile(output_buffer.getvalue())
        base_filename = os.path.splitext(uploaded_file.name)[0]
        new_filename = f"{base_filename}.webp"

        if base_title and len(uploaded_files) > 1:
            final_title = f"{base_title} ({i})"
        elif base_title:
            final_title = base_title
        else:
            final_title = base_filename

        image_instance = MediaImage(
            title=final_title,
            alt_text=alt_text,
            category=category,
            status=status,
        )

        image_instance.image.save(new_filename, new_file_content, save=False)
        image_instance.save()

        created_images.append(serialize_image(image_instance))

    logger.info(f"[ajax_upload_image] Uploaded {len(created_images)} image(s)")
    return JsonResponse({'success': True, 'images': created_images})


@staff_required
@require_POST
def ajax_edit_image(request, image_id):
    """
    Handles POST request to update an image's details. Fields left out of
    the payload keep their current values.
    """
    image = get_object_or_404(MediaImage, pk=image_id)

    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    form = bound_form(ImageEditForm, data, image)
    if not form.is_valid():
        return JsonResponse({'success': False, 'error': form_errors(form)}, status=400)

    try:
        image = get_engine().update_image(image_id, form.cleaned_data)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_edit_image')
    except Exception as e:
        logger.error(f"Error in ajax_edit_image for image {image_id}: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    return JsonResponse({'success': True, 'image': serialize_image(image)})


@staff_required
@require_POST
def ajax_delete_image(request, image_id):
    """
    Deletes an image after taking it out of its series and recounting its
    category.
    """
    try:
        get_engine().delete_image(image_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_delete_image')
    except Exception as e:
        logger.error(f"Error in ajax_delete_image for image {image_id}: {e}", exc_info=True)
        return JsonResponse({'success': False, 'error': str(e)}, status=500)

    return JsonResponse({'success': True, 'message': 'Image deleted successfully.'})


@require_POST
@ratelimit(key='ip', rate=settings.PORTFOLIO_LIKE_RATE, method='POST', block=True)
def ajax_like_image(request, image_id):
    """
    Public like/unlike. Likes never drop below zero.
    """
    image = get_object_or_404(MediaImage, pk=image_id, status=MediaImage.ImageStatus.PUBLISHED)

    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    action = data.get('action', 'like')
    if action == 'like':
        MediaImage.objects.filter(pk=image.pk).update(likes=F('likes') + 1)
    elif action == 'unlike':
        MediaImage.objects.filter(pk=image.pk, likes__gt=0).update(likes=F('likes') - 1)
    else:
        return JsonResponse({'success': False, 'error': 'Invalid action. Use "like" or "unlike".'}, status=400)

    image.refresh_from_db(fields=['likes'])
    get_engine().invalidate(IMAGES)
    logger.info(f"Image {action}d: {image.title} ({image.likes})")
    return JsonResponse({'success': True, 'likes': image.likes})


# --- Categories ---

@require_GET
def ajax_get_categories(request):
    def build():
        return [serialize_category(c) for c in ImageCategory.objects.all()]

    categories = get_engine().cache.get_or_set(cache_key(CATEGORIES, 'list'), build)
    return JsonResponse({'success': True, 'categories': categories})


@require_GET
def ajax_get_category(request, slug):
    """
    Category by slug with its published images. The count is taken live so
    the response never depends on the denormalised image_count.
    """
    category = get_object_or_404(ImageCategory, slug=slug)
    images = MediaImage.objects.filter(
        category=category, status=MediaImage.ImageStatus.PUBLISHED
    ).select_related('category').order_by('-featured', 'order', '-uploaded_at')

    data = serialize_category(category)
    data['images'] = [serialize_image(img) for img in images]
    data['image_count'] = len(data['images'])
    return JsonResponse({'success': True, 'category': data})


@staff_required
@require_POST
def ajax_create_category(request):
    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    form = CategoryForm(data)
    if not form.is_valid():
        return JsonResponse({'success': False, 'error': form_errors(form)}, status=400)

    category = form.save()
    logger.info(f"Category created: {category.name}")
    return JsonResponse({'success': True, 'category': serialize_category(category)}, status=201)


@staff_required
@require_POST
def ajax_edit_category(request, category_id):
    category = get_object_or_404(ImageCategory, pk=category_id)

    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    form = bound_form(CategoryForm, data, category)
    if not form.is_valid():
        return JsonResponse({'success': False, 'error': form_errors(form)}, status=400)

    category = form.save()
    logger.info(f"Category updated: {category.name}")
    return JsonResponse({'success': True, 'category': serialize_category(category)})


@staff_required
@require_POST
def ajax_delete_category(request, category_id):
    try:
        cleared = get_engine().delete_category(category_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_delete_category')

    return JsonResponse({
        'success': True,
        'message': 'Category deleted successfully.',
        'uncategorized_images': cleared,
    })


@staff_required
@require_POST
def ajax_recount_category(request, category_id):
    try:
        category = get_engine().recompute_category_count(category_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_recount_category')

    return JsonResponse({'success': True, 'category': serialize_category(category)})

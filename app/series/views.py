# portfolio/app/series/views.py
import json
import logging

from django.conf import settings
from django.core.paginator import Paginator
from django.db.models import F
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from core.cache import cache_key
from core.views import staff_required, load_payload
from images.exceptions import RelationshipError
from images.models import MediaImage
from images.relationships import get_engine, SERIES
from images.views import (
    serialize_image, engine_error_response, is_staff, bound_form, form_errors
)
from .forms import SeriesForm
from .models import Series

logger = logging.getLogger(__name__)


def serialize_series(series, thumbnails=None):
    """
    `thumbnails` maps image id -> url for first members, used when the series
    has no cover. Missing ids are tolerated.
    """
    thumbnails = thumbnails or {}
    thumbnail_url = series.cover_image.url if series.cover_image else None
    if not thumbnail_url and series.image_ids:
        thumbnail_url = thumbnails.get(series.image_ids[0])

    return {
        'id': series.id,
        'title': series.title,
        'slug': series.slug,
        'description': series.description,
        'image_ids': list(series.image_ids),
        'image_count': series.image_count,
        'cover_image_id': series.cover_image_id,
        'thumbnail_url': thumbnail_url,
        'category_id': series.category_id,
        'category_name': series.category.name if series.category else None,
        'featured': series.featured,
        'order': series.order,
        'status': series.status,
    }


def _first_member_urls(series_list):
    first_ids = [s.image_ids[0] for s in series_list if s.image_ids and not s.cover_image_id]
    if not first_ids:
        return {}
    return {pk: img.url for pk, img in MediaImage.objects.in_bulk(first_ids).items()}


def _series_response(series):
    series = Series.objects.select_related('cover_image', 'category').get(pk=series.pk)
    return JsonResponse({'success': True, 'series': serialize_series(series, _first_member_urls([series]))})


@require_GET
def ajax_get_series_list(request):
    """
    Lists series, featured first. The public only sees published series.
    """
    staff = is_staff(request)
    params = {
        'status': request.GET.get('status', '') if staff else Series.SeriesStatus.PUBLISHED,
        'featured': request.GET.get('featured', ''),
        'category': request.GET.get('category', ''),
        'page': request.GET.get('page', '1'),
    }

    def build():
        query = Series.objects.select_related('cover_image', 'category')
        if params['status']:
            query = query.filter(status=params['status'])
        if params['featured'] in ('1', 'true'):
            query = query.filter(featured=True)
        if params['category']:
            query = query.filter(category__slug=params['category'])

        paginator = Paginator(query, settings.PORTFOLIO_PAGE_SIZE)
        page = paginator.get_page(params['page'])
        series_list = list(page.object_list)
        thumbnails = _first_member_urls(series_list)
        return {
            'series': [serialize_series(s, thumbnails) for s in series_list],
            'page': page.number,
            'num_pages': paginator.num_pages,
            'total': paginator.count,
        }

    data = get_engine().cache.get_or_set(cache_key(SERIES, 'list', staff=staff, **params), build)
    return JsonResponse({'success': True, **data})


@require_GET
def ajax_get_series(request, slug):
    """
    Series detail with its member images in series order. Member ids that no
    longer resolve are skipped rather than trusted, and the public only sees
    published members.
    """
    staff = is_staff(request)

    def build():
        series = get_object_or_404(Series.objects.select_related('cover_image', 'category'), slug=slug)
        members = MediaImage.objects.select_related('category').in_bulk(series.image_ids)
        images = []
        for pk in series.image_ids:
            image = members.get(pk)
            if image is None:
                logger.warning(f"[ajax_get_series] Series {series.pk} lists missing image {pk}")
                continue
            if not staff and not image.is_published:
                continue
            images.append(serialize_image(image))

        data = serialize_series(series, {pk: img.url for pk, img in members.items()})
        data['images'] = images
        return data

    data = get_engine().cache.get_or_set(cache_key(SERIES, 'detail', slug, staff=staff), build)

    if data['status'] == Series.SeriesStatus.DRAFT and not staff:
        return JsonResponse({'success': False, 'error': 'You do not have permission to view this series.'}, status=403)

    Series.objects.filter(pk=data['id']).update(views=F('views') + 1)
    return JsonResponse({'success': True, 'series': data})


@staff_required
@require_POST
def ajax_create_series(request):
    """
    Creates a series. The payload may carry `image_ids` (ordered) and a
    `cover_image` that must be one of them.
    """
    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    image_ids = data.get('image_ids') or []
    if not isinstance(image_ids, list):
        return JsonResponse({'success': False, 'error': 'image_ids must be a list.'}, status=400)

    form = SeriesForm(data)
    if not form.is_valid():
        return JsonResponse({'success': False, 'error': form_errors(form)}, status=400)

    cover = form.cleaned_data.get('cover_image')
    try:
        series = get_engine().create_series(
            form.save(commit=False),
            image_ids=image_ids,
            cover_image_id=cover.pk if cover else None,
        )
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_create_series')

    response = _series_response(series)
    response.status_code = 201
    return response


@staff_required
@require_POST
def ajax_edit_series(request, series_id):
    series = get_object_or_404(Series, pk=series_id)

    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    form = bound_form(SeriesForm, data, series)
    if not form.is_valid():
        return JsonResponse({'success': False, 'error': form_errors(form)}, status=400)

    try:
        series = get_engine().update_series(series_id, form.cleaned_data)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_edit_series')

    return _series_response(series)


@staff_required
@require_POST
def ajax_delete_series(request, series_id):
    try:
        released = get_engine().delete_series(series_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_delete_series')

    return JsonResponse({
        'success': True,
        'message': 'Series deleted successfully.',
        'released_images': released,
    })


@staff_required
@require_POST
def ajax_add_image(request, series_id, image_id):
    try:
        series = get_engine().add_image_to_series(series_id, image_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_add_image')
    return _series_response(series)


@staff_required
@require_POST
def ajax_remove_image(request, series_id, image_id):
    try:
        series = get_engine().remove_image_from_series(series_id, image_id)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_remove_image')
    return _series_response(series)


@staff_required
@require_POST
def ajax_reorder_images(request, series_id):
    """
    Expects {"image_ids": [...]} with the full desired order. Ids that are
    not already members are ignored.
    """
    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    image_ids = data.get('image_ids')
    if not isinstance(image_ids, list):
        return JsonResponse({'success': False, 'error': 'image_ids must be a list.'}, status=400)

    try:
        series = get_engine().reorder_series_images(series_id, image_ids)
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_reorder_images')
    return _series_response(series)


@staff_required
@require_POST
def ajax_set_cover(request, series_id):
    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    try:
        series = get_engine().set_cover_image(series_id, data.get('image_id'))
    except RelationshipError as e:
        return engine_error_response(e, 'ajax_set_cover')
    return _series_response(series)

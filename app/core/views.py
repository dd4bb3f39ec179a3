# portfolio/app/core/views.py
import json
import logging
from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST
from django_ratelimit.exceptions import Ratelimited

from .apps import get_query_cache

logger = logging.getLogger(__name__)


def staff_required(view_func):
    """ Decorator to ensure the user is logged in AND is a staff member. """
    @login_required
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not request.user.is_staff:
            logger.warning(f"[staff_required] Non-staff user {request.user.username} denied {request.path}")
            return JsonResponse({'success': False, 'error': 'You do not have permission to access this resource.'}, status=403)
        return view_func(request, *args, **kwargs)
    return _wrapped_view


def load_payload(request):
    """
    Supports both a JSON body and standard form data.
    Raises json.JSONDecodeError on a malformed JSON body.
    """
    if request.content_type == 'application/json':
        if not request.body:
            return {}
        data = json.loads(request.body)
        if not isinstance(data, dict):
            raise json.JSONDecodeError("Expected a JSON object", request.body.decode('utf-8', 'replace'), 0)
        return data
    return request.POST.dict()


def handler403(request, exception=None):
    if isinstance(exception, Ratelimited):
        logger.warning(f"Rate limit exceeded on {request.path}")
        return JsonResponse({
            'success': False,
            'error': 'You have exceeded the request limit. Please wait a while and try again.'
        }, status=429)

    logger.error(f"Permission denied (403) for request to {request.path}")
    return JsonResponse({'success': False, 'error': 'Permission denied.'}, status=403)


@staff_required
@require_GET
def api_cache_stats(request):
    return JsonResponse({'success': True, 'cache': get_query_cache().stats()})


@staff_required
@require_POST
def api_cache_clear(request):
    """
    Clears the whole query cache, or only the keys matching `pattern`.
    """
    try:
        data = load_payload(request)
    except json.JSONDecodeError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON.'}, status=400)

    cache = get_query_cache()
    pattern = (data.get('pattern') or '').strip()
    if pattern:
        cleared = cache.invalidate(pattern)
    else:
        cleared = cache.clear()
    logger.info(f"[api_cache_clear] {request.user.username} cleared {cleared} keys (pattern='{pattern}')")
    return JsonResponse({'success': True, 'cleared': cleared})

import pytest
from django.urls import reverse

from images.models import ImageCategory, MediaImage
from images.resources import MediaImageResource
from series.models import Series

pytestmark = pytest.mark.django_db


def test_deleting_image_in_admin_updates_series(admin_client, make_image, make_series, make_category):
    category = make_category()
    cover, other = make_image('cover', category=category), make_image('other', category=category)
    series = make_series(images=[cover, other], cover=cover)

    response = admin_client.post(reverse('admin:images_mediaimage_delete', args=[cover.pk]), {'post': 'yes'})

    assert response.status_code == 302
    series.refresh_from_db()
    assert series.image_ids == [other.pk]
    assert series.cover_image_id == other.pk
    category.refresh_from_db()
    assert category.image_count == 1


def test_deleting_series_in_admin_keeps_images(admin_client, make_image, make_series):
    image = make_image()
    series = make_series(images=[image])

    admin_client.post(reverse('admin:series_series_delete', args=[series.pk]), {'post': 'yes'})

    assert not Series.objects.exists()
    image.refresh_from_db()
    assert image.series_id is None


def test_changing_category_in_admin_recounts(admin_client, make_image, make_category):
    street, nature = make_category('Street'), make_category('Nature')
    image = make_image(category=street)

    response = admin_client.post(reverse('admin:images_mediaimage_change', args=[image.pk]), {
        'title': image.title,
        'description': '',
        'alt_text': '',
        'category': nature.pk,
        'order': 0,
        'status': MediaImage.ImageStatus.PUBLISHED,
    })

    assert response.status_code == 302
    assert ImageCategory.objects.get(pk=street.pk).image_count == 0
    assert ImageCategory.objects.get(pk=nature.pk).image_count == 1


def test_category_changelist_renders(admin_client, make_category):
    make_category('Street')
    response = admin_client.get(reverse('admin:images_imagecategory_changelist'))
    assert response.status_code == 200


def test_editing_image_in_admin_refreshes_cached_lists(admin_client, client, make_image):
    image = make_image('before')
    url = reverse('images:ajax_get_images')
    assert client.get(url).json()['images'][0]['title'] == 'before'

    response = admin_client.post(reverse('admin:images_mediaimage_change', args=[image.pk]), {
        'title': 'after',
        'description': '',
        'alt_text': '',
        'order': 0,
        'status': MediaImage.ImageStatus.PUBLISHED,
    })

    assert response.status_code == 302
    assert client.get(url).json()['images'][0]['title'] == 'after'


def test_editing_series_in_admin_refreshes_cached_detail(admin_client, client, make_series):
    series = make_series('Harbour', status=Series.SeriesStatus.PUBLISHED)
    url = reverse('series:ajax_get_series', args=[series.slug])
    client.get(url)

    response = admin_client.post(reverse('admin:series_series_change', args=[series.pk]), {
        'title': 'Harbour Nights',
        'slug': series.slug,
        'description': '',
        'order': 0,
        'status': Series.SeriesStatus.PUBLISHED,
    })

    assert response.status_code == 302
    assert client.get(url).json()['series']['title'] == 'Harbour Nights'


def test_image_import_refreshes_counts_and_cache(make_category, make_image, app_cache):
    category = make_category()
    image = make_image(category=category)
    ImageCategory.objects.filter(pk=category.pk).update(image_count=0)
    app_cache.set('images:list', [image.title])

    MediaImageResource().after_import(None, None)

    assert app_cache.get('images:list') is None
    category.refresh_from_db()
    assert category.image_count == 1

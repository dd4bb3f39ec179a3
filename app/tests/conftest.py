import pytest
from django.contrib.auth.models import User
from django.test import Client

from core.apps import get_query_cache
from core.cache import QueryCache
from images.models import ImageCategory, MediaImage
from images.relationships import RelationshipEngine
from series.models import Series


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def query_cache(clock):
    return QueryCache(default_ttl=60, clock=clock)


@pytest.fixture(autouse=True)
def app_cache():
    """The process cache outlives test transactions, so start every test empty."""
    cache = get_query_cache()
    cache.clear()
    yield cache
    cache.clear()


@pytest.fixture
def engine(query_cache):
    return RelationshipEngine(cache=query_cache)


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path / 'media')


@pytest.fixture
def make_category(db):
    def make(name='Street', **kwargs):
        return ImageCategory.objects.create(name=name, **kwargs)
    return make


@pytest.fixture
def make_image(db):
    def make(title='Image', **kwargs):
        return MediaImage.objects.create(title=title, **kwargs)
    return make


@pytest.fixture
def make_series(db):
    def make(title='Harbour', images=(), cover=None, **kwargs):
        """Writes both sides of the membership directly, bypassing the engine."""
        series = Series.objects.create(
            title=title,
            image_ids=[img.pk for img in images],
            cover_image=cover,
            **kwargs
        )
        MediaImage.objects.filter(pk__in=[img.pk for img in images]).update(series=series)
        return series
    return make


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(username='curator', password='secret', is_staff=True)


@pytest.fixture
def staff_client(staff_user):
    client = Client()
    client.force_login(staff_user)
    return client


@pytest.fixture
def user_client(db):
    user = User.objects.create_user(username='visitor', password='secret')
    client = Client()
    client.force_login(user)
    return client

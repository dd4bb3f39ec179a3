from django.apps import AppConfig
from django.conf import settings

from .cache import QueryCache


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'

    def ready(self):
        # One cache per process, owned by the app registry rather than a module global,
        # so tests can build their own QueryCache and hand it to the engine.
        self.query_cache = QueryCache(default_ttl=settings.PORTFOLIO_CACHE_TTL)
        self.query_cache.start_sweeper(settings.PORTFOLIO_CACHE_SWEEP_INTERVAL)


def get_query_cache():
    from django.apps import apps
    return apps.get_app_config('core').query_cache

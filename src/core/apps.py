"""App configuration for the project-wide utilities in ``core``."""

from django.apps import AppConfig
from django.core.checks import Tags, Warning, register


class CoreConfig(AppConfig):
    """Settings, URLs, middleware and the Redis connection live here."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "core"

    def ready(self) -> None:
        register(redis_reachable, Tags.caches, deploy=True)


def redis_reachable(app_configs, **kwargs):
    """Deploy check: the decision cache works without Redis, but slowly."""
    import redis

    from .redis_client import get_redis_client

    try:
        get_redis_client().ping()
    except redis.RedisError as exc:
        return [
            Warning(
                f"Redis at REDIS_URL is unreachable: {exc}",
                hint="Access decisions will be recomputed on every request.",
                id="core.W001",
            )
        ]
    return []

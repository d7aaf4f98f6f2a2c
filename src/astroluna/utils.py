import os
from dotenv import load_dotenv
load_dotenv()


def _split_env_list(name: str, default: str = ""):
    """Return a list of non-empty, stripped values from a comma-separated env var.

    If the env var is empty or not set, return an empty list (avoids [''] entries).
    """
    val = os.getenv(name, default).strip()
    if not val:
        return []
    return [v.strip() for v in val.split(",") if v.strip()]


def _ensure_http_scheme(origins):
    """Ensure each origin starts with a scheme (http:// or https://).

    If a value has no scheme, prepend http://. Django requires a scheme on
    CSRF_TRUSTED_ORIGINS entries.
    """
    fixed = []
    for o in origins:
        if o and not o.startswith(("http://", "https://")):
            fixed.append("http://" + o)
        else:
            fixed.append(o)
    return fixed


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def redis_cache_enabled() -> bool:
    """True when the default cache is served by django-redis.

    Raw Redis commands (SET NX, Lua scripts) are only issued in that case;
    other backends go through the portable `django.core.cache` API.
    """
    from django.core.cache import cache
    return cache.__class__.__module__.startswith("django_redis")

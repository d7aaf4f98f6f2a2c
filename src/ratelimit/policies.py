"""Named rate-limit policies and the view decorator that applies them.

Policies are read from ``settings.RATE_LIMITS`` at call time so tests can
override them with ``self.settings(...)``.
"""
import functools
from typing import Callable, Optional

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
import logging

from .limiters import FixedWindowLimiter, SlidingWindowLimiter, TokenBucketLimiter, RateLimitResult

security_logger = logging.getLogger('security')

DEFAULT_MESSAGE = "Too many requests, please try again later."


def client_ip(request) -> str:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR") or "unknown"


def is_whitelisted(ip: str) -> bool:
    return ip in set(getattr(settings, "RATE_LIMIT_WHITELIST", []))


def limits_enabled() -> bool:
    return bool(getattr(settings, "RATE_LIMIT_ENABLED", True))


def get_policy(name: str) -> dict:
    try:
        return settings.RATE_LIMITS[name]
    except KeyError:
        raise ValueError(f"Unknown rate limit policy: {name}")


def build_limiter(policy: dict):
    algorithm = policy.get("algorithm", "fixed")
    if algorithm == "fixed":
        return FixedWindowLimiter(policy["limit"], policy["window"])
    if algorithm == "sliding":
        return SlidingWindowLimiter(policy["limit"], policy["window"])
    if algorithm == "token_bucket":
        return TokenBucketLimiter(policy["capacity"], policy["refill_rate"], policy.get("refill_interval", 1))
    raise ValueError(f"Unknown rate limit algorithm: {algorithm}")


def default_key(name: str, request) -> str:
    """`<policy>:<user id or ip>`; only the AI and per-user policies key by user."""
    prefix = name.replace("_", "-")
    user = getattr(request, "user", None)
    if name in ("ai", "user") and user is not None and user.is_authenticated:
        return f"{prefix}:{user.pk}"
    return f"{prefix}:{client_ip(request)}"


def rate_limit_headers(policy: dict, result: RateLimitResult) -> dict:
    if policy.get("algorithm") == "token_bucket":
        return {
            "X-RateLimit-User-Remaining": str(result.remaining),
            "X-RateLimit-User-Capacity": str(result.limit),
        }
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
        "X-RateLimit-Window": str(result.window),
    }


def rejection_body(policy: dict, result: RateLimitResult) -> dict:
    body = {
        "success": False,
        "error": policy.get("message", DEFAULT_MESSAGE),
        "retryAfter": result.retry_after,
    }
    if policy.get("algorithm") == "token_bucket":
        body["availableTokens"] = result.remaining
        body["capacity"] = result.limit
    return body


def check(name: str, request, key: Optional[str] = None):
    """Count one request against policy `name`.

    Returns ``(policy, result, key)``, or ``None`` when the request is exempt
    (limits disabled, whitelisted IP, or an anonymous caller on a per-user policy).
    """
    if not limits_enabled():
        return None
    ip = client_ip(request)
    if is_whitelisted(ip):
        return None

    policy = get_policy(name)
    limiter = build_limiter(policy)
    if policy.get("algorithm") == "token_bucket":
        user = getattr(request, "user", None)
        if key is None and (user is None or not user.is_authenticated):
            return None
        key = key or default_key(name, request)
        result = limiter.consume(key)
    else:
        key = key or default_key(name, request)
        result = limiter.hit(key)

    if not result.allowed:
        security_logger.warning(
            "rate limit exceeded",
            extra={"policy": name, "key": key, "ip": ip, "path": request.path, "retry_after": result.retry_after},
        )
    return policy, result, key


def rate_limit(name: str, key: Optional[Callable] = None):
    """Decorate an APIView handler method with policy `name`.

    `key` optionally maps the DRF request to a custom limiter key.
    """
    def decorator(view_method):
        @functools.wraps(view_method)
        def wrapper(self, request, *args, **kwargs):
            custom_key = key(request) if key is not None else None
            outcome = check(name, request, custom_key)
            if outcome is None:
                return view_method(self, request, *args, **kwargs)

            policy, result, limiter_key = outcome
            headers = rate_limit_headers(policy, result)
            if not result.allowed:
                headers["Retry-After"] = str(result.retry_after)
                return Response(rejection_body(policy, result), status=status.HTTP_429_TOO_MANY_REQUESTS, headers=headers)

            response = view_method(self, request, *args, **kwargs)
            if policy.get("skip_successful") and response.status_code < 400:
                FixedWindowLimiter(policy["limit"], policy["window"]).refund(limiter_key)
            for header, value in headers.items():
                response[header] = value
            return response
        return wrapper
    return decorator

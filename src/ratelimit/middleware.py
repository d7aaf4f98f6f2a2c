from django.http import JsonResponse

from .policies import check, rate_limit_headers, rejection_body

# Paths called by third parties or health checks rather than end users
EXEMPT_PATHS = ("/api/health", "/api/payments/webhook")


class ApiRateLimitMiddleware:
    """Apply the global `api` policy to every `/api/` request."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not request.path.startswith("/api/") or request.path.startswith(EXEMPT_PATHS):
            return self.get_response(request)

        outcome = check("api", request)
        if outcome is None:
            return self.get_response(request)

        policy, result, _ = outcome
        headers = rate_limit_headers(policy, result)
        if not result.allowed:
            response = JsonResponse(rejection_body(policy, result), status=429)
            response["Retry-After"] = str(result.retry_after)
        else:
            response = self.get_response(request)
        # route-level policies set their own headers and take precedence
        for header, value in headers.items():
            if header not in response:
                response[header] = value
        return response

"""TartanTrips Middleware Package"""

from tartantrips.middleware.rate_limit import RateLimitMiddleware

__all__ = ["RateLimitMiddleware"]

from inference_gateway.rate_limiting.rate_limiter import RateLimiter, RateLimitStatus

__all__ = ["RateLimitStatus", "RateLimiter"]

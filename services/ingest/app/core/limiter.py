from slowapi import Limiter
from slowapi.util import get_remote_address

# Per-IP limits for operator routes. Partner webhooks are limited per endpoint
# by services.webhook_guard.RateLimiter instead.
limiter = Limiter(key_func=get_remote_address)

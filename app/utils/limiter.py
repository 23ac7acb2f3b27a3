from slowapi import Limiter
from slowapi.util import get_remote_address
from app.config.config import settings


# Claim and withdrawal endpoints carry their own tighter limits
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=not settings.TEST,
)

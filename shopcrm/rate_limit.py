from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings


# Shared so public routes can add their own tighter limit on top of the default
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])

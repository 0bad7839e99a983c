# /flowchat/utils/rate_limiter.py

from slowapi import Limiter
from flowchat.utils.request_utils import get_client_key
from flowchat.config.settings import settings

# Shared limiter instance; main.py and the routers both import it from here.

limiter = Limiter(
    key_func=get_client_key,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)

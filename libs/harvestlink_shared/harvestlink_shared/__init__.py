from .rate_limit import SlidingWindowLimiter, RedisRateLimiter
from .env import env_bool, env_int, env_float, env_list
from .phone_utils import normalize_phone_e164, mask_phone

__all__ = [
    "SlidingWindowLimiter",
    "RedisRateLimiter",
    "env_bool",
    "env_list",
    "env_int",
    "env_float",
    "normalize_phone_e164",
    "mask_phone",
]

from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limiter for the public webhook endpoints (protection against abuse)
limiter = Limiter(key_func=get_remote_address)

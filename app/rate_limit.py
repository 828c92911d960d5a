"""Rate limiting configuration using slowapi."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

# Disable rate limiting during tests
_testing = os.environ.get("TESTING", "").lower() in ("1", "true", "yes")

# Create limiter instance - uses client IP by default
limiter = Limiter(key_func=get_remote_address, enabled=not _testing)

# Rate limit constants
RATE_LIMIT_INTAKE = "10/minute"  # Uploads store files and start transcodes
RATE_LIMIT_MUTATE = "60/minute"  # Re-encodes and deletes
RATE_LIMIT_DELIVERY = "300/minute"  # Signed URL issuance, one per rendered asset
RATE_LIMIT_READ = "200/minute"

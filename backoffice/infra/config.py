from __future__ import annotations

import os

AUTHZ_API_BASE_URL = os.getenv("AUTHZ_API_BASE_URL", "http://localhost:3000/")
AUTHZ_API_TIMEOUT_SECONDS = float(os.getenv("AUTHZ_API_TIMEOUT_SECONDS", "20.0"))
AUTHZ_READ_RETRIES = int(os.getenv("AUTHZ_READ_RETRIES", "2"))
AUTHZ_RETRY_DELAY_SECONDS = float(os.getenv("AUTHZ_RETRY_DELAY_SECONDS", "1.0"))
AUTHZ_SERVICE_TOKEN = os.getenv("AUTHZ_SERVICE_TOKEN") or None

ROLE_NAME_MAX_LENGTH = 50

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

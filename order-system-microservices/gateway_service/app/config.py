import os

# Service URLs for inter-service communication.
ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://order_service:8000")
PAYMENT_SERVICE_URL = os.getenv("PAYMENT_SERVICE_URL", "http://payment_service:8000")
# Empty disables receipts.
NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL", "http://notification_service:8000")

# Deadline for every downstream call, in seconds.
DOWNSTREAM_TIMEOUT_SECONDS = float(os.getenv("DOWNSTREAM_TIMEOUT_SECONDS", "10"))
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))
STARTUP_PROBE_TIMEOUT_SECONDS = float(os.getenv("STARTUP_PROBE_TIMEOUT_SECONDS", "5"))

# Payment hop retry policy: 2 retries, 3 attempts in total.
PAYMENT_MAX_RETRIES = 2
RETRY_BASE_DELAY_SECONDS = 0.1
RETRY_JITTER_MIN_SECONDS = 0.025
RETRY_JITTER_MAX_SECONDS = 0.075

NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", "4"))

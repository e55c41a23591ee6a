import os

# Settings are read at import time; keep tests hermetic
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("API_TOKEN", "test-api-token")
for name in ("GMAIL_CLIENT_ID", "GMAIL_CLIENT_SECRET", "GMAIL_REFRESH_TOKEN", "GMAIL_ACCESS_TOKEN"):
    os.environ.pop(name, None)

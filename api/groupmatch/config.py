import os

MATCH_TIMEZONE = os.getenv("MATCH_TIMEZONE", "Asia/Tokyo")
MATCH_SCORE_THRESHOLD = float(os.getenv("MATCH_SCORE_THRESHOLD", "0.75"))

FRONT_ORIGIN = os.getenv("FRONT_ORIGIN", "https://thematching-frontend.vercel.app").rstrip("/")

GROUP_TOKEN_PREFIX = os.getenv("GROUP_TOKEN_PREFIX", "tok_")
GROUP_TOKEN_BYTES = max(8, int(os.getenv("GROUP_TOKEN_BYTES", "8")))
GROUP_TOKEN_MAX_TRIES = int(os.getenv("GROUP_TOKEN_MAX_TRIES", "5"))

LINE_CHANNEL_ACCESS_TOKEN = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")
LINE_PUSH_URL = os.getenv("LINE_PUSH_URL", "https://api.line.me/v2/bot/message/push")
LINE_PUSH_TIMEOUT_SECONDS = float(os.getenv("LINE_PUSH_TIMEOUT_SECONDS", "10"))
LINE_DISPATCH_LIMIT = int(os.getenv("LINE_DISPATCH_LIMIT", "50"))
LINE_IMMEDIATE_DISPATCH_LIMIT = int(os.getenv("LINE_IMMEDIATE_DISPATCH_LIMIT", "10"))
# 0 keeps retrying failed notifications forever.
LINE_MAX_ATTEMPTS = int(os.getenv("LINE_MAX_ATTEMPTS", "0"))
# Rows left in 'processing' longer than this by a crashed dispatcher are claimable again.
LINE_PROCESSING_TIMEOUT_MINUTES = int(os.getenv("LINE_PROCESSING_TIMEOUT_MINUTES", "30"))
LINE_RETRY_BACKOFF_MINUTES = [1, 5, 30, 180, 720, 1440]

CRON_SECRET = os.getenv("CRON_SECRET", "")

RL_GROUP_PAGE_LIMIT = int(os.getenv("RL_GROUP_PAGE_LIMIT", "60"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))

"""Constants shared by the sample chat fixtures and the tests that check them."""

from datetime import datetime

SYSTEM = "系统消息"
DAY = 86400
HOUR = 3600

# Local-time anchors so hour/date buckets are timezone independent
BASE_TS = int(datetime(2024, 3, 1, 9, 0, 0).timestamp())
NEW_YEAR_TS = int(datetime(2025, 1, 5, 20, 0, 0).timestamp())

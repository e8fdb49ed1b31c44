STATE_DIR_NAME = ".kanban_engine"
CONFIG_FILE = "config.yaml"
ITEMS_FILE = "items.yaml"
ITEMS_LOCK_FILE = "items.lock"
ACTIVITY_FILE = "activity.jsonl"
ACTIVITY_LOCK_FILE = "activity.lock"

STORE_VERSION = 1

DEFAULT_ORDER_BASE = 0  # 0 or 1
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
DEFAULT_UNKNOWN_LABEL = "Unknown"
DEFAULT_LOG_LEVEL = "INFO"

SECONDS_PER_DAY = 60 * 60 * 24
MIN_DURATION_DAYS = 1

ITEM_KIND_TASK = "task"
ITEM_KIND_COLUMN = "column"

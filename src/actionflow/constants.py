"""Define shared constants for the actionflow state directory and engine defaults."""

STATE_DIR_NAME = ".actionflow"
CONFIG_FILE = "config.yaml"

STORE_FILENAME = "outline.yaml"
LOCK_FILENAME = "outline.lock"
EVENTS_FILENAME = "outline_events.jsonl"
ARTIFACTS_DIR = "artifacts"

STORE_VERSION = 1

# Spacing between neighbours after a full renumber of a sibling group.
DEFAULT_POSITION_STRIDE = 1000

DEFAULT_CLEANUP_DAYS = 7
DEFAULT_LOG_LEVEL = "INFO"

# Byte range locked on Windows, where fcntl is unavailable.
WINDOWS_LOCK_BYTES = 1

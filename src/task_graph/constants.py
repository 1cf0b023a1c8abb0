STATE_DIR_NAME = ".task_graph"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks.yaml"
ARTIFACTS_DIR = "artifacts"
EVENTS_FILE = "task_events.jsonl"
LOCK_SUFFIX = ".lock"
LOCK_TIMEOUT = 30  # seconds

DEFAULT_TAG = "master"
DEFAULT_PRIORITY = "medium"
DEFAULT_LOG_LEVEL = "INFO"

TAG_NAME_PATTERN = r"^[A-Za-z0-9_-]+$"


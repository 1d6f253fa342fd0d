"""
Constants for the planflow execution engine.
"""
from pathlib import Path
import os

# Application information
APP_NAME = "planflow"
APP_VERSION = "0.1.0"
APP_DESCRIPTION = "Execution engine for declarative, multi-step capability plans"

# Paths
BASE_DIR = Path(__file__).parent.parent.absolute()
CONFIG_DIR = Path(os.path.expanduser("~/.config/planflow"))
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_DIR = CONFIG_DIR / "logs"

# Logging
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
LOG_ROTATION = "100 MB"
LOG_RETENTION = "10 days"

# Model client
GEMINI_MODEL = "gemini-2.5-pro-exp-03-25"
GEMINI_MAX_TOKENS = 2000
GEMINI_TEMPERATURE = 0.1
REQUEST_TIMEOUT = 45  # seconds

# Execution
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_BACKOFF_BASE = 2.0  # seconds, raised to the attempt index
HISTORY_LIMIT = 10
CACHE_TTL_SECONDS = 300
SUMMARY_HISTORY_WINDOW = 3

# Synthetic capability name used for loop step results
LOOP_CAPABILITY = "loop"

# Step id used for run-level errors (timeouts, unexpected failures)
EXECUTOR_STEP_ID = "executor"

# Reserved parameter tokens that read the "last referenced" buckets
REFERENCE_TOKENS = {
    "@lastUsers": "users",
    "@lastMessages": "messages",
    "@lastChannels": "channels",
}

# Payload keys scanned when refreshing the "last referenced" buckets
REFERENCE_KEYS = {
    "users": ("users", "affected_users", "affectedUsers"),
    "messages": ("messages", "affected_messages", "affectedMessages"),
    "channels": ("channels", "affected_channels", "affectedChannels"),
}

# Safety
RISK_LEVELS = {
    "SAFE": 0,            # Queries, read-only capabilities
    "LOW": 1,             # Reversible single-target actions
    "MEDIUM": 2,          # Reversible bulk actions
    "HIGH": 3,            # Irreversible actions on content
    "CRITICAL": 4,        # Irreversible actions on principals, privileged targets
}

# Capabilities whose target lists are subject to bulk thresholds
BULK_TARGET_CAPABILITIES = ("ban", "kick")
BULK_MESSAGE_CAPABILITIES = ("delete_messages",)

# Capabilities that must never hit a privileged principal
PRIVILEGED_SENSITIVE_CAPABILITIES = ("ban", "kick", "timeout")

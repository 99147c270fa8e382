"""Global constants for pierboot."""

# Session / pier defaults

DEFAULT_SESSION_NAME = "urbit-session"
DEFAULT_PIER_NAME = "my-comet"
DEFAULT_WORK_DIR_NAME = "running-urbit"
RUNTIME_BINARY_NAME = "urbit"

# Files written into the work dir

LOG_FILE_NAME = "urbit-boot.log"
SCREENRC_FILE_NAME = ".screenrc.urbit"
SCREEN_SCROLLBACK = 5000

# Required external tools

REQUIRED_TOOLS = ("screen",)

# Timing (seconds)

READINESS_TIMEOUT = 600.0
READINESS_POLL_INTERVAL = 2.0
CODE_TIMEOUT = 20.0
CODE_POLL_INTERVAL = 1.0
START_GRACE_PERIOD = 2.0
DOJO_SETTLE_DELAY = 15.0
BROWSER_DELAY = 2.0
WATCHER_POLL_INTERVAL = 0.25
WATCHER_BACKLOG = 10
LIVENESS_INTERVAL = 5.0

# Dojo command that prints the web login code

CODE_COMMAND = "+code"
CODE_ANCHOR = r"\+code"
CODE_WINDOW = 5

# Readiness: "http: web interface live on http://localhost:8080"

READINESS_PATTERN = r"http: web interface live on (http://localhost:\d+)"

# Access code: four groups of six lowercase letters. A leading "~" marks a
# ship name, which is never a code.

CODE_PATTERN = r"(?<![\w~-])([a-z]{6}(?:-[a-z]{6}){3})(?![\w-])"

# Log lines worth showing the operator while the pier boots

INTEREST_PATTERNS = (
    r"urbit [0-9]",
    r"boot: downloading",
    r"boot: home",
    r"boot: found",
    r"bootstrap",
    r"clay: kernel",
    r"clay: base",
    r"vere: checking",
    r"http: web interface",
    r"pier .* live",
    r"mdns: .* registered",
)

LOG_MARKER = "[LOG]"

# Runtime downloads

RUNTIME_DOWNLOAD_URL = "https://urbit.org/install/{target}/latest"
DOWNLOAD_MAX_ATTEMPTS = 3

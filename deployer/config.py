"""Deployer configuration loaded from environment variables."""

import logging
import os
import sys

from pythonjsonlogger import jsonlogger


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# ClickHouse connection
# ---------------------------------------------------------------------------
CLICKHOUSE_HOST = os.environ.get("CLICKHOUSE_HOST", "localhost")
CLICKHOUSE_PORT = int(os.environ.get("CLICKHOUSE_PORT", "8443"))
CLICKHOUSE_USER = os.environ.get("CLICKHOUSE_USER", "default")
CLICKHOUSE_PASSWORD = os.environ.get("CLICKHOUSE_PASSWORD", "")
CLICKHOUSE_DATABASE = os.environ.get("CLICKHOUSE_DATABASE", "deployer")
CLICKHOUSE_SECURE = _env_bool("CLICKHOUSE_SECURE", "true")

# ---------------------------------------------------------------------------
# External API base URLs and credentials
# ---------------------------------------------------------------------------
PUMPPORTAL_API_URL = "https://pumpportal.fun/api"
PUMPFUN_WEB_URL = "https://pump.fun"
SOLANA_TRACKER_API_URL = "https://data.solanatracker.io"
SOLANA_RPC_URL = os.environ.get("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com/")

PUMPPORTAL_API_KEY = os.environ.get("PUMPPORTAL_API_KEY", "")
AGENT_WALLET_ADDRESS = os.environ.get("AGENT_WALLET_ADDRESS", "")
SOLANA_TRACKER_API_KEY = os.environ.get("SOLANA_TRACKER_API_KEY", "")

HTTP_TIMEOUT = 30.0              # httpx timeout in seconds
LAMPORTS_PER_SOL = 1_000_000_000

# ---------------------------------------------------------------------------
# Admission gate
# ---------------------------------------------------------------------------
MIN_WALLET_RESERVE_SOL = float(os.environ.get("MIN_WALLET_RESERVE_SOL", "0.3"))
MIN_DEPLOYMENT_SOL = float(os.environ.get("MIN_DEPLOYMENT_SOL", "0.05"))
DEPLOYMENT_COOLDOWN_SECONDS = float(os.environ.get("DEPLOYMENT_COOLDOWN_SECONDS", "240"))
MIN_CONFIDENCE = float(os.environ.get("MIN_CONFIDENCE", "60"))
DEFAULT_CONFIDENCE = 70.0        # Used when the proposer omits a score
DEFAULT_INITIAL_BUY_SOL = 0.05
DEDUP_CACHE_TTL = 300            # 5 minutes

# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
EXECUTION_DRY_RUN = _env_bool("EXECUTION_DRY_RUN", "true")
CREATE_SLIPPAGE_PCT = 10
CREATE_PRIORITY_FEE_SOL = 0.0005
SELL_SLIPPAGE_PCT = 15
SELL_PRIORITY_FEE_SOL = 0.0001

# ---------------------------------------------------------------------------
# Position tracker
# ---------------------------------------------------------------------------
TRACKER_INTERVAL = int(os.environ.get("TRACKER_INTERVAL", "120"))     # 2 minutes
TRACKER_MAX_CONCURRENCY = int(os.environ.get("TRACKER_MAX_CONCURRENCY", "4"))
RECONCILE_INTERVAL = 600         # 10 minutes

# ---------------------------------------------------------------------------
# Exit policy (percent ROI, hours)
# ---------------------------------------------------------------------------
EXIT_TAKE_PROFIT_PCT = float(os.environ.get("EXIT_TAKE_PROFIT_PCT", "50"))
EXIT_STOP_LOSS_PCT = float(os.environ.get("EXIT_STOP_LOSS_PCT", "-50"))
EXIT_DEAD_WINDOW_HOURS = float(os.environ.get("EXIT_DEAD_WINDOW_HOURS", "24"))
EXIT_DEAD_MIN_ROI_PCT = float(os.environ.get("EXIT_DEAD_MIN_ROI_PCT", "1"))

# ---------------------------------------------------------------------------
# Rolling summary
# ---------------------------------------------------------------------------
SUMMARY_MAX_LEARNINGS = 10

# ---------------------------------------------------------------------------
# Writer / buffer settings
# ---------------------------------------------------------------------------
BUFFER_FLUSH_SIZE = 1_000        # Flush after this many rows
BUFFER_FLUSH_INTERVAL = 10.0     # Flush after this many seconds
BUFFER_MAX_ROWS = 50_000         # Per-table cap while ClickHouse is unreachable
WRITER_MAX_RETRIES = 3
WRITER_BASE_BACKOFF = 1.0        # Seconds, doubles per retry

# ---------------------------------------------------------------------------
# HTTP interface
# ---------------------------------------------------------------------------
HTTP_HOST = os.environ.get("HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.environ.get("HTTP_PORT", "8080"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def setup_logging() -> None:
    """Configure structured JSON logging."""
    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("clickhouse_connect").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

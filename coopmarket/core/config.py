import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://coop:coop@db:5432/coopmarket_db")

# Shared low-latency store (idempotency records, job board, claim locks)
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# Application Metadata
PROJECT_NAME = "Cooperative Delivery Marketplace"
VERSION = "1.0.0"
CURRENCY = "INR"

# Idempotency gate windows (seconds)
IDEMPOTENCY_INFLIGHT_TTL_SEC = int(os.getenv("IDEMPOTENCY_INFLIGHT_TTL_SEC", 60))
IDEMPOTENCY_REPLAY_TTL_SEC = int(os.getenv("IDEMPOTENCY_REPLAY_TTL_SEC", 300))

# Job board expiries (seconds)
JOB_DETAIL_TTL_SEC = int(os.getenv("JOB_DETAIL_TTL_SEC", 7200))
JOB_CLAIM_TTL_SEC = int(os.getenv("JOB_CLAIM_TTL_SEC", 3600))

# Event ledger
LEDGER_APPEND_RETRIES = int(os.getenv("LEDGER_APPEND_RETRIES", 3))
EVENT_BUS_QUEUE_SIZE = int(os.getenv("EVENT_BUS_QUEUE_SIZE", 1000))

# Settlement reconciler (repairs settlements whose ledger events were never appended)
POLLING_INTERVAL = int(os.getenv("POLLING_INTERVAL", 5))
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50))
RECONCILE_GRACE_SEC = int(os.getenv("RECONCILE_GRACE_SEC", 30))

# Governed parameter defaults, used until governance writes the parameters row.
# Amounts are in paise; rates are percentages of the delivery fee.
DEFAULT_BASE_DELIVERY_FEE = 4000
DEFAULT_PER_KM_RATE = 1000
DEFAULT_POOL_CONTRIBUTION_RATE = 10
DEFAULT_INFRA_FEE_RATE = 10
DEFAULT_DAILY_MINIMUM_GUARANTEE = 60000
DEFAULT_PREP_TIME_MIN = 20

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application, and parses the booking policy values
(refund tiers, reschedule limits, workload enforcement) into typed constants.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or any("pytest" in str(frame) for frame in __import__('inspect').stack(0))

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    # Try multiple possible locations for .env file
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # .env (when run from src)
        pathlib.Path.cwd() / ".env",  # .env in current directory
        pathlib.Path.cwd().parent / ".env",  # .env in parent directory
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _get_bool(name: str, default: str) -> bool:
    """Read a boolean flag from environment ("true"/"1"/"yes" are truthy)."""
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def parse_refund_tiers(raw: str) -> list[tuple[float, int]]:
    """
    Parse refund policy tiers from "hours:percentage" pairs.

    Example: "24:100,4:50,0:0" means a full refund at 24h or more before the
    appointment, 50% at 4h or more, nothing otherwise.

    Args:
        raw: Comma-separated "min_hours:percentage" pairs

    Returns:
        Tiers sorted by min_hours descending

    Raises:
        ValueError: If a pair is malformed, a percentage is outside [0, 100],
            or the tiers are not monotonic (more lead time must never refund less)
    """
    tiers: list[tuple[float, int]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            hours_str, percentage_str = chunk.split(":")
            hours = float(hours_str)
            percentage = int(percentage_str)
        except ValueError:
            raise ValueError(f"Invalid refund tier '{chunk}', expected 'hours:percentage'")
        if percentage < 0 or percentage > 100:
            raise ValueError(f"Refund percentage must be between 0 and 100, got {percentage}")
        tiers.append((hours, percentage))

    if not tiers:
        raise ValueError("At least one refund tier is required")

    tiers.sort(key=lambda tier: tier[0], reverse=True)
    for (_, higher_pct), (_, lower_pct) in zip(tiers, tiers[1:]):
        if higher_pct < lower_pct:
            raise ValueError(
                f"Refund tiers must be monotonic: {higher_pct}% offered for more lead time than {lower_pct}%"
            )
    return tiers


# Configuration constants with defaults
def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/ev_service_dev"
    )

DATABASE_URL = get_database_url()
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Authentication
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Service center local time (dates and times are stored naive in this offset)
SERVICE_CENTER_TIMEZONE_OFFSET_HOURS = int(os.getenv("SERVICE_CENTER_TIMEZONE_OFFSET_HOURS", "7"))

# Notifications (optional webhook, logged only when unset)
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))

# Technician assignment policy
ENFORCE_TECHNICIAN_WORKLOAD = _get_bool("ENFORCE_TECHNICIAN_WORKLOAD", "true")

# Cancellation and rescheduling policy
REFUND_POLICY_TIERS = parse_refund_tiers(os.getenv("REFUND_POLICY_TIERS", "24:100,4:50,0:0"))
MINIMUM_CANCELLATION_HOURS = float(os.getenv("MINIMUM_CANCELLATION_HOURS", "0"))
RESCHEDULE_MINIMUM_HOURS = float(os.getenv("RESCHEDULE_MINIMUM_HOURS", "24"))
MAX_CUSTOMER_RESCHEDULES = int(os.getenv("MAX_CUSTOMER_RESCHEDULES", "2"))

# No-show detection
NO_SHOW_GRACE_MINUTES = int(os.getenv("NO_SHOW_GRACE_MINUTES", "30"))

# Payments
PENDING_PAYMENT_TTL_MINUTES = int(os.getenv("PENDING_PAYMENT_TTL_MINUTES", "15"))
DEFAULT_DEPOSIT_AMOUNT = int(os.getenv("DEFAULT_DEPOSIT_AMOUNT", "200000"))

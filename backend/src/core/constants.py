"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_REASON_LENGTH = 1000

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
# Production URLs should be added via FRONTEND_URL environment variable
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # Web dashboard dev server (Vite)
    "http://localhost:8081",      # Mobile app dev server (Expo)
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Appointment numbers: APT + YYMMDD + random suffix
APPOINTMENT_NUMBER_PREFIX = "APT"
APPOINTMENT_NUMBER_SUFFIX_DIGITS = 3
APPOINTMENT_NUMBER_MAX_ATTEMPTS = 10

# Appointments without a computed completion are assumed to take this long
DEFAULT_APPOINTMENT_DURATION_MINUTES = 60

# Technician scoring weights (sum to 1.0)
SKILL_MATCH_WEIGHT = 0.4
WORKLOAD_WEIGHT = 0.3
PERFORMANCE_WEIGHT = 0.2
AVAILABILITY_WEIGHT = 0.1

# Skill match when the job names no service category at all
NEUTRAL_SKILL_MATCH_SCORE = 50.0
MAX_PROFICIENCY_LEVEL = 5
MAX_CUSTOMER_RATING = 5

# Background jobs
NO_SHOW_CHECK_INTERVAL_MINUTES = 10
SCHEDULER_MAX_INSTANCES = 1  # Prevent overlapping scheduler runs

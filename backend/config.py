import os
from dotenv import load_dotenv
from typing import List

load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

# API Keys
# An empty key is allowed at startup; AI endpoints then fail with a credentials error
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
AI_MAX_OUTPUT_TOKENS = int(os.getenv("AI_MAX_OUTPUT_TOKENS", "1000"))

# CORS configuration
ALLOWED_ORIGINS_STR = os.getenv("ALLOWED_ORIGINS", "*")
ALLOWED_ORIGINS: List[str] = [origin.strip() for origin in ALLOWED_ORIGINS_STR.split(",")]

# Application settings
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Database pool settings
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))

# AI response cache
# Advice, label recommendations and comment summaries are kept for 72 hours
# unless the issue (or its comment stream) changes first.
AI_CACHE_TTL_HOURS = int(os.getenv("AI_CACHE_TTL_HOURS", "72"))
# Background sweep of expired entries; 0 disables it (reads still evict lazily)
AI_CACHE_SWEEP_INTERVAL_SECONDS = int(os.getenv("AI_CACHE_SWEEP_INTERVAL_SECONDS", "3600"))

# Rate limiting
# Per-user quotas on AI calls, counted in fixed UTC windows:
# - AI_RATE_LIMIT_PER_MINUTE requests per calendar minute
# - AI_RATE_LIMIT_PER_DAY requests per calendar day
#
# The limiter fails open: if the counter table cannot be read within
# RATE_LIMIT_STORE_TIMEOUT_SECONDS the request is allowed.
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
AI_RATE_LIMIT_PER_MINUTE = int(os.getenv("AI_RATE_LIMIT_PER_MINUTE", "10"))
AI_RATE_LIMIT_PER_DAY = int(os.getenv("AI_RATE_LIMIT_PER_DAY", "100"))
RATE_LIMIT_STORE_TIMEOUT_SECONDS = float(os.getenv("RATE_LIMIT_STORE_TIMEOUT_SECONDS", "5"))

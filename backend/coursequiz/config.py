"""
Runtime configuration read from environment variables.

Every setting has a development-friendly default so the service starts
with a local SQLite database and no extra setup. Production deployments
override these through the container environment.
"""

import os

# Database connection string.
# Falls back to SQLite for local development when PostgreSQL is not available.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./course_quiz.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Bearer token settings shared with the auth service that issues tokens
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_TTL_MINUTES = int(os.getenv("JWT_TTL_MINUTES", "120"))

# Percentage score needed for an attempt to count as passed.
# Fixed per attempt at creation time; callers cannot override it.
PASSING_THRESHOLD = int(os.getenv("PASSING_THRESHOLD", "70"))

# Comma separated list of allowed frontend origins
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

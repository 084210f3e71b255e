"""Shared constants for ArcadeGate.

Limits and formats used across the key lifecycle, session and rate-limit
modules are defined here. No magic numbers in other modules — import from here.
"""

# ─── Access Key Codes ────────────────────────────────────────────────────────

# 36-symbol alphabet: uppercase letters then digits.
CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Number of symbols in a code, excluding separators.
CODE_LENGTH: int = 16

# A separator is inserted between every group of this many symbols.
CODE_GROUP_SIZE: int = 4

CODE_SEPARATOR: str = "-"

# Upper bound on codes minted by a single generate call.
MAX_KEYS_PER_GENERATE: int = 100

# Insert attempts per code before generation gives up on collisions.
CODE_GENERATION_ATTEMPTS: int = 5

# ─── Sessions ────────────────────────────────────────────────────────────────

SESSION_TTL_DAYS: int = 7

SESSION_ALGORITHM: str = "HS256"

# ─── Validation Rate Limit ───────────────────────────────────────────────────

# Attempts admitted per address within one window.
RATE_LIMIT_MAX_ATTEMPTS: int = 5

# Sliding window length (15 minutes).
RATE_LIMIT_WINDOW_SECONDS: float = 15 * 60

# How often the background pruner evicts idle addresses.
RATE_LIMIT_PRUNE_INTERVAL_SECONDS: float = 5 * 60

# Coarse per-address cap on key-management endpoints (slowapi syntax).
KEY_MANAGEMENT_RATE_LIMIT: str = "60/minute"

# ─── Redirects ───────────────────────────────────────────────────────────────

REGULAR_REDIRECT: str = "/games.html"
PRIVILEGED_REDIRECT: str = "/admin.html"

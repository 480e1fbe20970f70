"""Game configuration constants and settings."""

import os

from dotenv import load_dotenv

load_dotenv()

TIMEZONE = os.getenv("TIMEZONE", "America/Los_Angeles")

DATABASE_PATH = os.getenv("RING_DATABASE_PATH", "assassin_ring.db")

# Seconds a mutation waits for its group's lock before giving up with "busy"
LOCK_TIMEOUT_SECONDS = float(os.getenv("RING_LOCK_TIMEOUT", "5.0"))
# Seconds SQLite waits for the write lock before the mutation fails with "conflict"
SQLITE_BUSY_TIMEOUT_SECONDS = float(os.getenv("RING_SQLITE_TIMEOUT", "5.0"))

# Re-audit the ring inside every mutation before it commits
AUDIT_AFTER_MUTATION = os.getenv("RING_AUDIT_AFTER_MUTATION", "true").lower() == "true"

DEFAULT_DARE = "Be creative!"
TARGET_PLACEHOLDER = "your target"

# What the surviving assassin's new edge carries after an elimination
ELIMINATION_DARE_POLICIES = ("inherit", "reassign")
ELIMINATION_DARE_POLICY = os.getenv("RING_ELIMINATION_DARE_POLICY", "inherit").lower()

# What the splicing assassin's new edge carries after a removal
REMOVAL_DARE_POLICIES = ("keep", "inherit")
REMOVAL_DARE_POLICY = os.getenv("RING_REMOVAL_DARE_POLICY", "keep").lower()

if ELIMINATION_DARE_POLICY not in ELIMINATION_DARE_POLICIES:
    raise ValueError(f"Unknown elimination dare policy: {ELIMINATION_DARE_POLICY}")
if REMOVAL_DARE_POLICY not in REMOVAL_DARE_POLICIES:
    raise ValueError(f"Unknown removal dare policy: {REMOVAL_DARE_POLICY}")

FEED_LIMIT = 50
FEED_CHANNEL_STATE_KEY = "feed_channel"

"""Global configuration for hwchain."""

import os

# ---------- Persisted format ----------
FORMAT_VERSION = "1.0"
HASH_ALGORITHM = "sha256"

# prev_hash of the first event in every chain
GENESIS_HASH = "0" * 64

# ---------- Submission store ----------
# Bounded retries for transient write failures (persist only, never load).
PERSIST_MAX_ATTEMPTS = int(os.environ.get("HWCHAIN_PERSIST_MAX_ATTEMPTS", "3"))
PERSIST_BACKOFF_SECONDS = float(os.environ.get("HWCHAIN_PERSIST_BACKOFF_SECONDS", "0.05"))

# Submissions live under <base>/homework/completed/
DEFAULT_BASE_DIR = os.environ.get("HWCHAIN_BASE_DIR", ".")
COMPLETED_SUBDIR = os.path.join("homework", "completed")
SUBMISSION_PREFIX = "submission_"

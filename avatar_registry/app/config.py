"""
Configuration module for the Avatar Registry service.

Centralizes all configuration with environment variable support,
validation, and caching for performance.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("AVATAR_REGISTRY_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("AVATAR_REGISTRY_DB_PATH", "data/avatar_registry.db")

# Membership oracle: static|http|open
MEMBERSHIP_ORACLE = os.getenv("AVATAR_REGISTRY_MEMBERSHIP_ORACLE", "static")
MEMBERSHIP_SNAPSHOT_PATH = os.getenv("AVATAR_REGISTRY_MEMBERSHIP_SNAPSHOT", "membership/snapshot.json")
MEMBERSHIP_ORACLE_URL = os.getenv("AVATAR_REGISTRY_MEMBERSHIP_ORACLE_URL", "")
MEMBERSHIP_ORACLE_TIMEOUT = float(os.getenv("AVATAR_REGISTRY_MEMBERSHIP_ORACLE_TIMEOUT", "3"))

# Initial seeder (ignored once the database holds state)
INITIAL_SEEDER = os.getenv("AVATAR_REGISTRY_SEEDER", "")

# Caller proofs
CALLER_TRUST_STORE_PATH = os.getenv("AVATAR_REGISTRY_CALLER_TRUST_STORE", "trust/caller_trust_store.json")
PROOF_FRESHNESS_SECONDS = int(os.getenv("AVATAR_REGISTRY_PROOF_FRESHNESS_SECONDS", "300"))
MAX_CLOCK_SKEW_SECONDS = int(os.getenv("AVATAR_REGISTRY_MAX_CLOCK_SKEW_SECONDS", "30"))

# Rate limits (requests per minute)
SELF_UPDATE_RPM = int(os.getenv("AVATAR_REGISTRY_SELF_UPDATE_RPM", "120"))
SEEDER_RPM = int(os.getenv("AVATAR_REGISTRY_SEEDER_RPM", "30"))

# Logging
LOG_LEVEL = os.getenv("AVATAR_REGISTRY_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("AVATAR_REGISTRY_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("AVATAR_REGISTRY_LOG_FILE") or None

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("AVATAR_REGISTRY_CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, force_reload: bool = False) -> Dict[str, Any]:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_caller_trust_store() -> Dict[str, Any]:
    """Load the caller trust store; an empty store if the file is missing."""
    try:
        return _config_cache.get_json(CALLER_TRUST_STORE_PATH)
    except FileNotFoundError:
        return {"caller_keys": {}}


def invalidate_config_cache() -> None:
    """Invalidate all cached configuration."""
    _config_cache.invalidate()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that all required configuration is present.
    Returns dict of name -> ok.
    """
    checks = {
        "caller_trust_store": Path(CALLER_TRUST_STORE_PATH).exists(),
        "seeder": bool(INITIAL_SEEDER),
    }

    if MEMBERSHIP_ORACLE == "static":
        checks["membership_snapshot"] = Path(MEMBERSHIP_SNAPSHOT_PATH).exists()
    elif MEMBERSHIP_ORACLE == "http":
        checks["membership_oracle_url"] = bool(MEMBERSHIP_ORACLE_URL)

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"

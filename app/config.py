"""Core application configuration & tunable progress rules.

Business rules that may evolve (display caps, aggregation policy, sweep
interval, retry/backoff thresholds, queue priorities, cache TTLs) are
centralized here so they can be adjusted without diving into service logic.
Values can be overridden via environment variables; tests monkeypatch the
dicts directly.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# ------------------------------- Progress -------------------------------- #
PROGRESS_SETTINGS: dict[str, float | str] = {
	# Display-only cap; completion is decided on the uncapped values.
	"max_display_percentage": 999.0,
	# How per-criterion percentages fold into the campaign percentage:
	# "average" (unweighted mean) or "minimum" (weakest criterion).
	"aggregation": os.getenv("PROGRESS_AGGREGATION", "average"),
}

# ----------------------------- Recalculation ----------------------------- #
RECALCULATION_SETTINGS: dict[str, int | list[str]] = {
	# Per-campaign work in batch runs is spread over this many threads.
	"max_workers": int(os.getenv("RECALCULATION_MAX_WORKERS", "4")),
	# Campaign statuses revisited by batch runs. Cancelled is terminal.
	"batch_statuses": ["active", "completed"],
	# Recent run history returned by the admin endpoint.
	"history_limit": 50,
}

# ---------------------------- Periodic Sweep ----------------------------- #
SWEEP_SETTINGS: dict[str, float | bool] = {
	"enabled": _env_bool("SWEEP_ENABLED", True),
	"interval_seconds": float(os.getenv("SWEEP_INTERVAL_SECONDS", "90")),
	# Delay before the first tick after startup.
	"initial_delay_seconds": float(os.getenv("SWEEP_INITIAL_DELAY_SECONDS", "5")),
	# How long shutdown waits for an in-flight sweep.
	"shutdown_timeout_seconds": 10.0,
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 2,
	"factor": 2,          # Exponential factor
	"max_seconds": 60,
	"max_attempts": 3,    # Worker attempts per job before leaving it to the sweep
	"jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | float] = {
	"priorities": {  # Lower number = higher priority
		"high": 0,
		"normal": 5,
		"low": 10,
	},
	"warn_depth": 1000,
	"max_in_memory": 5000,
	"poll_timeout_seconds": 5.0,
}

# --------------------------------- Cache ---------------------------------- #
CACHE_SETTINGS: dict[str, int | bool | str] = {
	"use_redis": _env_bool("CACHE_USE_REDIS", False),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_key_prefix": "broker-campaigns:",
	"redis_socket_timeout": 2,
	"progress_ttl_seconds": int(os.getenv("PROGRESS_CACHE_TTL_SECONDS", "60")),
}

__all__ = [
	"PROGRESS_SETTINGS",
	"RECALCULATION_SETTINGS",
	"SWEEP_SETTINGS",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
	"CACHE_SETTINGS",
]

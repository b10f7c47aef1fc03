"""Configuration settings for RouteKeeper."""

CONFIG = {
    # Sample filter
    "max_accuracy": 100,  # meters - reject fixes with a wider accuracy radius
    "min_movement": 3,  # meters - jitter gate between accepted fixes
    "earth_radius_km": 6371,
    # Elevation enrichment
    "elevation_url": "https://api.open-meteo.com/v1/elevation",
    "elevation_fetch_interval": 10,  # seconds between external lookups
    "elevation_timeout": 10,  # seconds per HTTP request
    # Elapsed time
    "timer_tick_interval": 1,  # seconds between display refreshes
    # Backups
    "backup_interval": 30,  # seconds between periodic snapshots while tracking
    "backup_every_entries": 10,  # snapshot when entry count hits a multiple of this
    "backup_max_gap": 120,  # seconds - snapshot on insert if the last one is older
    "backup_max_age": 24 * 3600,  # seconds - older snapshots are discarded at startup
    # Positioning subscription
    "gps_poll_interval": 3,  # seconds
    "start_position_options": {
        "high_accuracy": True,
        "max_cached_age_ms": 5000,  # cached fix allowed for a faster initial lock
        "timeout_ms": 30000,
    },
    "resume_position_options": {
        "high_accuracy": True,
        "max_cached_age_ms": 0,
        "timeout_ms": 15000,
    },
    "websocket_port": 8765,
    "status_interval": 10,  # seconds between STATE log lines while capturing
    # Storage
    "db_path": "routekeeper.db",
    "fallback_path": "routekeeper_fallback.json",
    "db_max_pages": None,  # SQLite page cap; None leaves the database unbounded
    "fallback_quota": 5 * 1024 * 1024,  # bytes - flat store capacity
}

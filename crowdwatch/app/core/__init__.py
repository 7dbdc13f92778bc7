"""
Core package — cross-cutting concerns.

Modules:
    config      — environment variables & settings
    thresholds  — immutable EngineConfig built from settings
    logging     — structured JSON logging
    middleware  — request logging / context
    errors      — exception hierarchy & handlers
    health      — health check aggregation
    database    — async SQLAlchemy engine and documents table
    cache       — Redis claims for cross-process dedup
"""

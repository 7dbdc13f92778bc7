"""
store — Document persistence consumed by the engine.

Sub-modules:
    base    — DocumentStore interface, filters, write batches, limits
    memory  — in-process implementation (tests, local runs)
    sql     — SQLAlchemy async implementation
"""

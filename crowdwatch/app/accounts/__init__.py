"""
accounts — Reactions to account lifecycle events (welcome, topic subscription).
"""

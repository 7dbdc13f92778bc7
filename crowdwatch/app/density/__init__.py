"""
density — Converts zone counts and areas into density, status and occupancy.
"""

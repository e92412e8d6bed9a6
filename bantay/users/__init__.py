"""
users — User records: home location and safe acknowledgment.

Sub-modules:
    models   — UserRecord, HomeLocation, result types
    service  — conditional writes with one re-read retry on conflict
"""

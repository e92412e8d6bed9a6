"""
client — Polling client for the status API.

Sub-modules:
    api_client    — httpx wrapper around /api/v1
    state         — immutable ClientSessionState, UIMode
    persistence   — JSON file for the durable session subset
    status_store  — ClientStatusStore and PollHandle
"""

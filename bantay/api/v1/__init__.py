"""Version 1 routes, mounted under /api/v1."""

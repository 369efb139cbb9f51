"""Core tabletop primitives (vision geometry and live-update deltas).

Kept free of FastAPI and Redis concerns so it can be reused by API routes, the client, and tests.
"""

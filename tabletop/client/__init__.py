"""Client-side live session helpers.

The reconnection controller keeps one channel per session alive and turns deltas
into cache invalidations; it never fetches data itself.
"""

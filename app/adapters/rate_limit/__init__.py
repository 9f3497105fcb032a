"""Rate limit window storage.

The admission controller talks to the ``AbstractWindowStore`` seam, so the
in-memory store can later be swapped for Redis or another shared backend
without changing the HTTP layer.
"""

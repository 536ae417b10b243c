"""
TR2B backend package.

This package provides a FastAPI application whose route handlers run
unchanged on top of either an in-process store (single long-lived server)
or a shared Redis-protocol key/value store (many ephemeral edge instances).
"""

"""Media upload module.

Accepts raw upload bodies, optionally transcodes videos, and stores the
result for public delivery.
"""

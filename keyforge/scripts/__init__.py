"""
Command-line entry points (``keyforge-generate``, ``keyforge-build``).
"""

"""
Core modules for Claude usage statistics.

This package contains token accounting, pricing, aggregation and
session windowing. Nothing here performs I/O.
"""

"""
Performance Module
==================

Per-technician, per-sector monthly ledger of assignments, completions and
points.
"""

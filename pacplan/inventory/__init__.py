"""Deployed state — the inventory snapshot and the scope tree.

Both are collaborators: the planner consumes fully materialized snapshots and
never enumerates or retries anything itself.
"""

"""Scoring services: streak points, week boundaries and weekly totals.

Everything here reads from the canonical event log only. The point curve
in `points` is pure; `weekly` owns the materialized WeeklyScore rows.
"""

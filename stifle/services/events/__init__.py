"""Event services: the canonical log, the server half of sync, retention.

Imported by HTTP routes and CLI commands, keeping transport concerns out of
the event bookkeeping.
"""

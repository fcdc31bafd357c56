"""Cadence: end-to-end verification of cron-scheduled snapshots.

Drives an externally managed snapshot schedule through activation, cadence
checks and a restore, observing the platform only through its CLIs.
"""

__version__ = "0.1.0"

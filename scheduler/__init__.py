"""
Scheduler package for aggregate reconciliation.

This package contains:
- The APScheduler service that runs reconciliation daily or on an interval
- The reconciler that recomputes ratings and book counts from source
"""

__version__ = "1.0.0"

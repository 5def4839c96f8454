"""nestsync: offline-first event log shared by a household of devices."""

__version__ = "0.1.0"

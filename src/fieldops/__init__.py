"""
fieldops: offline-resilient field service job engine.

Job lifecycle state machine, diagnostic workflow interpreter and an offline
action queue that replays technician actions once connectivity returns.
"""

__version__ = "0.1.0"

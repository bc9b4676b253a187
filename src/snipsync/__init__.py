"""SnipSync: multi-device synchronization server for a snippet manager."""

__version__ = "1.0.0"

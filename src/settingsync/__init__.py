"""settingsync - Cross-device settings synchronization over WebDAV."""

__version__ = "1.0.0"

"""CRM copilot frontend core: resilient backend calls and task tracking."""

__version__ = "0.1.0"

"""MedReminder multi-device sync service."""

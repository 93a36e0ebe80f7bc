"""
Job runners for the event scheduling feature.
"""

from .reminder_job import run_event_reminders

__all__ = ["run_event_reminders"]

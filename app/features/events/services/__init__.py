"""
Service layer for event scheduling.
"""

from .attendance_service import AttendanceLedger, attendance_ledger
from .notification_client import DeliveryResult, HttpNotificationSender, NotificationSender
from .occurrence_service import OccurrenceService, expand_event, filter_cancelled, occurrence_service
from .reminder_dispatcher import DispatchSummary, ReminderDispatcher, build_reminder_dispatcher

__all__ = [
    "AttendanceLedger",
    "attendance_ledger",
    "DeliveryResult",
    "HttpNotificationSender",
    "NotificationSender",
    "OccurrenceService",
    "expand_event",
    "filter_cancelled",
    "occurrence_service",
    "DispatchSummary",
    "ReminderDispatcher",
    "build_reminder_dispatcher",
]

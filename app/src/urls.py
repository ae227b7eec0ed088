"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application
for accessing ticketing, attendance and scheduler resources.

These URLs are relative paths and are prefixed by the mount point of the
sub application (`/staff`, `/scheduler`) serving them.
"""

# -------------------------------
# Mount points
# -------------------------------
URL_STAFF_APP = "/staff"
URL_SCHEDULER_APP = "/scheduler"

# -------------------------------
# Ticket & Attendance
# -------------------------------
URL_TICKET_VALIDATION = "/ticket/validate"
URL_ATTENDANCE_SCAN = "/attendance/mark"
URL_ATTENDANCE_PRESENCE = "/attendance/presence"
URL_ATTENDANCE_BULK = "/attendance/bulk"
URL_ATTENDANCE_OVERVIEW = "/attendance/overview"

# -------------------------------
# Staff routes
# -------------------------------
URL_ASSIGNED_ROUTE = "/route/assigned"
URL_ROUTE_BOOKING = "/route/booking"

# -------------------------------
# Scheduler & Notifications
# -------------------------------
URL_DAILY_SCHEDULER = "/notification/daily"
URL_REMINDER_SCHEDULER = "/notification/reminder"
URL_SCHEDULER_STATUS = "/notification/status"
URL_BOOKING_REMINDER = "/notification/booking-reminder"
URL_NOTIFICATION_RESPONSE = "/notification/response"

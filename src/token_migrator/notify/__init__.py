"""Outbound notifications: room events, monitoring registration, status reports."""

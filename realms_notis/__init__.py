"""Realms Notification System - watches governance proposals and notifies a channel."""

__version__ = "0.1.0"

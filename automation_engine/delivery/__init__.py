"""Notification delivery: claiming, sending and outcome recording."""

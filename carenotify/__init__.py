"""Notification rule engine and consent gate for practice management."""

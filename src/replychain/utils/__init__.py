"""Shared helpers for replychain."""

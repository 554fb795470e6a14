"""Shared helpers for board_sync."""

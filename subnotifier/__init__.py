"""Telegram notifier for recurring subscription payments."""

"""Tableback - reservation reminders, no-show detection and waitlist automation."""

__version__ = "0.1.0"

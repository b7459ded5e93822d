"""Instructor Hub: file inventory, revenue tracking and bulk exports."""

__version__ = "0.1.0"

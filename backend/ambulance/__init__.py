"""Ambulance portal backend: booking lifecycle and payment-deadline engine."""

__version__ = "1.0.0"

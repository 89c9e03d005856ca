"""
Service layer for the booking lifecycle engine.

Services own transactions; repositories only flush.
"""

"""
Celery tasks for the booking lifecycle engine.

Import ``ambulance.tasks.celery_app`` to get the configured application.
"""

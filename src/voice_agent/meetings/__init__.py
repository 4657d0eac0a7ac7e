"""Meetings module -- data models, repository, and webhook event routing.

Provides Pydantic schemas, SQLAlchemy models, MeetingRepository with guarded
status transitions, and the WebhookEventRouter that turns Stream Video call
events into voice session actions.
"""

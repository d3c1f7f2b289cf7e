"""Meeting scheduling module -- timezone resolution, UTC conversion, and slot management.

Provides the Pydantic schemas for meeting requests and UTC windows, the
timezone catalog, and ScheduleResolver for local-time <-> UTC conversion,
slot enumeration, reconciliation and conflict checks.
"""

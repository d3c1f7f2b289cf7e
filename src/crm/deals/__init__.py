"""Deal pipeline rules -- stage definitions, stage gating, and import validation.

Provides the declarative StageDefinition table, StageGate for transition
decisions and missing-field reporting, and DealImportValidator for checking
imported rows against the same table.
"""

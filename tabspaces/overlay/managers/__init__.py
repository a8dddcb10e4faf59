"""Managers for workspace definitions and assignments.

Managers take their collaborators (host, stores) in ``__init__`` and never
raise host or storage errors to callers: failures are logged and reported
through a ``False`` / ``None`` return value.
"""

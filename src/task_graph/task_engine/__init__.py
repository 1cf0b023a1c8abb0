"""Task dependency graph and status lifecycle engine.

This package provides the task model, the in-memory store with rollback,
graph validation, the status lifecycle, next-task selection and the
file-backed persistence adapter for tagged task lists.
"""

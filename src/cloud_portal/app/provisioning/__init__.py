"""Provisioning core: state machines, validation, use cases and reconciliation."""

"""Adapters for the account factory, guardrail and release controllers."""

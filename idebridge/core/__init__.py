"""Shared error types and the in-process event bus."""

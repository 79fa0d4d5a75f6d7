"""Shared helpers: periodic background maintenance threads."""

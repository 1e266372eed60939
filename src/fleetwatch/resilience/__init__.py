"""Concurrency helpers for per-key serialisation."""

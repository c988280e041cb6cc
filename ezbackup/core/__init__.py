"""Backup execution core: cancellation, filesystem adapter and strategies."""

"""Utility helpers for ezbackup."""

"""Shared utilities for the link console."""

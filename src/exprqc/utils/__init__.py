"""Shared numeric helpers and atomic file output."""

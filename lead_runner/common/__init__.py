"""Shared helpers: logging, errors, retries, delays, text and CSV output."""

"""Shared plumbing: logging, correlation, errors, retry, shutdown and HTTP serving."""

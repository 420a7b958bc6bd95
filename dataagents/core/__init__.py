"""Shared infrastructure: logging, configuration, paths and exceptions."""

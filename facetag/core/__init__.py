"""Core configuration, logging, errors and engine context."""

"""Core tracing, export, configuration and logging modules."""

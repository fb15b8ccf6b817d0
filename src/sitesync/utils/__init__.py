"""Process and logging utilities."""

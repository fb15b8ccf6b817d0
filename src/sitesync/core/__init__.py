"""Core configuration, exceptions and shared types."""

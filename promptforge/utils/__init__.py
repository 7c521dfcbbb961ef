"""Configuration, file and logging helpers."""

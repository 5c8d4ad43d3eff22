"""Configuration, geometry and logging helpers."""

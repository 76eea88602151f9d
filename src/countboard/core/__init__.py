"""Configuration, calendar and security primitives."""

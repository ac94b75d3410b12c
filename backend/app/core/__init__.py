"""Core module for configuration, errors, logging and coordination primitives."""

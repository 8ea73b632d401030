"""Core primitives: errors, logging, settings and persistence."""

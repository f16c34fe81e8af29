"""Process-wide infrastructure (logging)."""

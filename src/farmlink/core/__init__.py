"""Configuration, languages and the per-user runtime context."""

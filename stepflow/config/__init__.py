"""Configuration for stepflow: runtime settings and flow definitions."""

"""Configuration sources, option schema and layered resolution."""

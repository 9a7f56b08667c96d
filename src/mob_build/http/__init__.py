"""HTTP helpers for downloading build artifacts."""

"""Task catalog, planning, scheduling and execution."""

"""Assistant configuration sync."""

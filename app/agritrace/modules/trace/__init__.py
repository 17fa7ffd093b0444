"""Read-side lookup of a full trace (batch, media, activities)."""

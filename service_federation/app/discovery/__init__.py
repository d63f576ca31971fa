"""Platform lookups and per-instance metrics retrieval."""

"""Database collaborators: connections, schema bootstrap, enrichment lookups."""

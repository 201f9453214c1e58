"""Remote catalog, search and enrichment services."""

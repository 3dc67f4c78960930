"""Core services: ref allocation, tree indexing, link resolution and rendering."""

"""Data models for refnotes."""

"""Running generated tests and normalizing their results."""

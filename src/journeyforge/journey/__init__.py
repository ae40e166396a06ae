"""Journey documents: models, loading and validation."""

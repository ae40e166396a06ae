"""Python test module rendering and managed-block merging."""

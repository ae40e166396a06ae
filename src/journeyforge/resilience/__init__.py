"""LLM error classification."""

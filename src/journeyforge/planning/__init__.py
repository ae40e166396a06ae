"""Optional LLM-structured planning ahead of code generation."""

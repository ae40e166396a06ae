"""Step text to IR primitives: hints, glossary and the pattern library."""

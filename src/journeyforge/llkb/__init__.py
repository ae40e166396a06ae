"""Learned-lesson knowledge base."""

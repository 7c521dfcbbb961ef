"""System prompts and request templates."""

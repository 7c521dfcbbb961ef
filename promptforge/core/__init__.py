"""Core prompt, variable and chain logic."""

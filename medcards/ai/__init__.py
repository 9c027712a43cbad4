"""LLM access, prompts and text-integrity helpers."""

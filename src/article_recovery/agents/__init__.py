"""LLM-backed agents: reviewer, batch fixer, special fixer, section writer."""

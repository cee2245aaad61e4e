"""Workflow engine for LLM-assisted manga storyboarding."""

__version__ = "0.1.0"

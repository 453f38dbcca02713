"""Sequential task workflows and LLM service routing with fallback."""

__version__ = "0.1.0"

"""model-selector - quota-aware provider/model selection for AI coding agents."""

__version__ = "0.1.0"

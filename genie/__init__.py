"""genie: provider-agnostic LLM invocation with per-repository cost accounting."""

__version__ = "0.3.0"

"""Backend factory for the supported generative-AI services."""

from typing import Optional

from copilot.backends.base_backend import BaseBackend, ChatHandle


def create_backend(backend_type: Optional[str] = None) -> BaseBackend:
    """Factory function to create a backend instance based on type.

    Args:
        backend_type: "gemini" (SDK) or "gemini-rest" (defaults to Config.AI_BACKEND)

    Returns:
        BaseBackend instance

    Raises:
        ValueError: If backend_type is not supported
    """
    if backend_type is None:
        from copilot.config import Config
        backend_type = Config.AI_BACKEND
    backend_type = backend_type.lower()

    if backend_type == "gemini":
        from copilot.backends.gemini_backend import GeminiBackend
        return GeminiBackend()
    elif backend_type == "gemini-rest":
        from copilot.backends.gemini_rest import GeminiRestBackend
        return GeminiRestBackend()
    else:
        raise ValueError(
            f"Unsupported backend type: '{backend_type}'. "
            f"Supported types are: 'gemini', 'gemini-rest'"
        )


__all__ = ["create_backend", "BaseBackend", "ChatHandle"]

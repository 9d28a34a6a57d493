from dreamjournal.app.providers.base import BaseProvider
from dreamjournal.app.providers.openai import OpenAICompatibleProvider
from dreamjournal.app.providers.retry import RetryPolicy, with_retry

__all__ = [
    "BaseProvider",
    "OpenAICompatibleProvider",
    "RetryPolicy",
    "with_retry",
]

"""
Toolgate providers module.

Streaming relay for the upstream chat completion endpoint.
"""

from toolgate.providers.stream import ChatStreamClient, RelayError, extract_text_delta, iter_stream_tokens

__all__ = ["ChatStreamClient", "RelayError", "extract_text_delta", "iter_stream_tokens"]

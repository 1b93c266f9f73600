"""mnemo: async client and natural-language REPL for a remote memory service."""

from mnemo.client import ApiResponse, MemoryClient, ResponseMeta
from mnemo.errors import ApiErrorResponse, ErrorCode, MemoryClientError

__version__ = "0.1.0"

__all__ = [
    "ApiErrorResponse",
    "ApiResponse",
    "ErrorCode",
    "MemoryClient",
    "MemoryClientError",
    "ResponseMeta",
]

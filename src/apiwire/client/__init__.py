"""
Client module: ApiClient and its builder.
"""

from apiwire.client.builder import ApiClientBuilder
from apiwire.client.core import ApiClient

__all__ = [
    "ApiClient",
    "ApiClientBuilder",
]

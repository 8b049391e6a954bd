"""
Utility modules for Storage Core.
"""

from .http import HttpClient, HttpResponse, RequestsHttpClient
from .quota import StorageUsage, counts_against_quota

__all__ = [
    "HttpClient",
    "HttpResponse",
    "RequestsHttpClient",
    "StorageUsage",
    "counts_against_quota",
]

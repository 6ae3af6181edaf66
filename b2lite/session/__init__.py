"""
Session Module - Authorization and Upload Endpoints

Shared mutable state of a client: the account session and the
per-bucket upload endpoints, both guarded by single-flight fetches.
"""

from .singleflight import SingleFlight
from .auth import Credentials, AuthSession, AuthManager
from .endpoints import UploadEndpoint, UploadEndpointCache

__all__ = [
    'SingleFlight',
    'Credentials',
    'AuthSession',
    'AuthManager',
    'UploadEndpoint',
    'UploadEndpointCache',
]

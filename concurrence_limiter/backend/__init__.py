"""Clients for the remote authorization authority."""
from .http_client import AuthorizationClient

__all__ = ["AuthorizationClient"]

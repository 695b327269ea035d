"""Client library for the identity server backchannel API."""
from .core.backchannel import IdentityClient, ErrorResponse, ErrorEntry

__all__ = ["IdentityClient", "ErrorResponse", "ErrorEntry"]

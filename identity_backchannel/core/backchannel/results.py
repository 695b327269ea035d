"""Outcome of one executed backchannel request.

Every execution yields exactly one of:

- :class:`Success`: transport succeeded with a status below 400
- :class:`ApplicationError`: transport succeeded with a status of 400 or above
- :class:`TransportFault`: the call itself raised
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Union

import requests

from .errors import ErrorResponse


@dataclass(frozen=True)
class Success:
    status_code: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ApplicationError:
    """Error status from the API.

    ``error_response`` is None when the server sent no body.
    """
    status_code: int
    body: str = ""
    error_response: Optional[ErrorResponse] = None

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class TransportFault:
    """Network or protocol failure raised by the HTTP transport.

    When the fault carried an HTTP response, its status and body are kept and
    an error body is decoded into ``error_response``.
    """
    exception: requests.RequestException
    status_code: Optional[int] = None
    body: str = ""
    error_response: Optional[ErrorResponse] = None

    @property
    def ok(self) -> bool:
        return False


RequestResult = Union[Success, ApplicationError, TransportFault]

"""Define the credentials interface used to sign requests.

Credentials are carried on the call context and consulted once per
request. The HTTP layer never inspects them beyond asking for a token;
the resulting value is sent as ``Authorization: QBox <token>``.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Union

import httpx


class BaseCredentials(ABC):
    """Provide the request signing interface.

    Implementations produce the token for a fully built request. They may
    read the method, URL, headers and, for form bodies, the content of
    the request. Returning an awaitable is allowed for signers that need
    to fetch key material asynchronously.
    """

    @abstractmethod
    def sign_request(self, request: httpx.Request) -> Union[str, Awaitable[str]]:
        """Return the access token for ``request``.

        :param request: Request about to be dispatched.
        :return: Token placed after ``QBox`` in the Authorization header.
        """
        pass


class TokenCredentials(BaseCredentials):
    """Credentials holding a precomputed token.

    Useful for upload tokens and other values issued out of band, where
    the token does not depend on the request contents.
    """

    def __init__(self, token: str):
        self.token = token

    def sign_request(self, request: httpx.Request) -> str:
        return self.token

"""
Exceptions raised by the collaborator clients.
"""
from typing import Optional


class UpstreamError(Exception):
    """A collaborator (city search, weather, forecast) could not be used.

    ``message`` is safe to show inline to the user.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint

    def __str__(self) -> str:
        return self.message

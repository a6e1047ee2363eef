"""REST API client used for identity resolution and simple replies."""

from edwiges.rest.client import RestClient

__all__ = ["RestClient"]

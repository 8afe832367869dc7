from __future__ import annotations

from typing import Optional

import requests

from citronus_client.credentials import CredentialResult, CredentialStatus

from .exceptions import AuthError, CitronusAPIError
from .rest_client import CITRONUS_API_URL, CitronusRESTClient


def _result(
    api_key: str,
    api_secret: str,
    status: CredentialStatus,
    error: Optional[Exception] = None,
) -> CredentialResult:
    return CredentialResult(
        api_key=api_key,
        api_secret=api_secret,
        status=status,
        source="validation",
        validated=status is CredentialStatus.LOADED,
        can_force_save=status is CredentialStatus.SERVICE_ERROR,
        validation_error=str(error) if error is not None else None,
        error=error,
    )


def validate_credentials(
    api_key: str,
    api_secret: str,
    api_url: str = CITRONUS_API_URL,
    client: Optional[CitronusRESTClient] = None,
) -> CredentialResult:
    """
    Calls the private ``balances`` method and classifies the outcome.

    Authentication failures come back as ``AUTH_ERROR``; API and network
    failures come back as ``SERVICE_ERROR`` so callers may still choose to
    store the keys. Programming errors propagate.
    """
    client = client or CitronusRESTClient(api_url=api_url, api_key=api_key, api_secret=api_secret)

    try:
        client.balances()
        return _result(api_key, api_secret, CredentialStatus.LOADED)
    except AuthError as exc:
        return _result(api_key, api_secret, CredentialStatus.AUTH_ERROR, exc)
    except CitronusAPIError as exc:
        return _result(api_key, api_secret, CredentialStatus.SERVICE_ERROR, exc)
    except requests.RequestException as exc:
        return _result(api_key, api_secret, CredentialStatus.SERVICE_ERROR, exc)

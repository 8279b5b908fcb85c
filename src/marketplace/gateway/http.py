"""Shared httpx plumbing for REST-based provider adapters."""

import httpx

from marketplace.gateway.port import GatewayRejectedError, TransientGatewayError


def send(client: httpx.Client, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue a request, turning transport failures into TransientGatewayError."""
    try:
        return client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransientGatewayError(f"Provider request timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientGatewayError(f"Provider unreachable: {exc}") from exc


def check_response(response: httpx.Response) -> dict:
    """Classify an HTTP response and return its JSON body.

    429 and 5xx are transient. Other 4xx are definitive rejections. A 2xx
    body that is not JSON is treated as transient: the provider may have
    processed the request and a retry with the same idempotency key is safe.
    """
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientGatewayError(f"Provider returned HTTP {response.status_code}")

    try:
        body = response.json()
    except ValueError as exc:
        if response.is_success:
            raise TransientGatewayError("Provider returned a malformed response") from exc
        body = {}

    if response.status_code >= 400:
        reason = (
            body.get("errorMessage")
            or body.get("message")
            or body.get("error_description")
            or f"Provider returned HTTP {response.status_code}"
        )
        code = body.get("errorCode") or body.get("name") or body.get("error") or str(response.status_code)
        raise GatewayRejectedError(reason, code=code)

    return body

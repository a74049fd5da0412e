from __future__ import annotations

import requests

from voicepilot.services.redaction import redact_sensitive_text

from .base import DownstreamProviderError

_STATUS_CATEGORIES = {
    400: "invalid_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    410: "not_found",
    429: "rate_limited",
}


def api_request_json(
    url: str,
    method: str,
    access_token: str,
    timeout: int,
    service_name: str,
    params: dict[str, object] | None = None,
    body: dict[str, object] | None = None,
) -> dict:
    headers = {
        "Accept": "application/json",
        "Authorization": f"Bearer {access_token}",
    }
    try:
        response = requests.request(
            method,
            url,
            headers=headers,
            params=params,
            json=body,
            timeout=timeout,
        )
    except requests.Timeout as exc:
        raise DownstreamProviderError(f"{service_name} API timed out.", "timeout") from exc
    except requests.RequestException as exc:
        raise DownstreamProviderError(
            f"{service_name} API failed: {redact_sensitive_text(str(exc))}",
            "network_error",
        ) from exc

    if not response.ok:
        category, message = _extract_provider_error(response)
        detail = f": {message}" if message else ""
        raise DownstreamProviderError(
            f"{service_name} API failed ({response.status_code}){detail}.",
            category,
            response.status_code,
        )

    if response.status_code == 204 or not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError as exc:
        raise DownstreamProviderError(
            f"{service_name} returned a non-JSON payload.", "invalid_response", response.status_code
        ) from exc
    if not isinstance(payload, dict):
        raise DownstreamProviderError(
            f"{service_name} returned an unexpected payload.", "invalid_response", response.status_code
        )
    return payload


def category_for_status(status_code: int) -> str:
    if status_code >= 500:
        return "provider_unavailable"
    return _STATUS_CATEGORIES.get(status_code, "provider_error")


def _extract_provider_error(response: requests.Response) -> tuple[str, str]:
    category = category_for_status(response.status_code)
    message = ""
    try:
        parsed = response.json()
    except ValueError:
        return category, message
    if not isinstance(parsed, dict):
        return category, message
    nested = parsed.get("error")
    if isinstance(nested, dict):
        message = str(nested.get("message") or "").strip()
        status = str(nested.get("status") or "").strip()
        if status:
            category = status.lower()
    elif isinstance(nested, str) and nested.strip():
        message = str(parsed.get("error_description") or nested).strip()
    return category, redact_sensitive_text(message)[:300]

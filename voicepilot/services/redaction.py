from __future__ import annotations

import re


_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[a-z0-9\-._~+/]+=*")
_TOKEN_FIELD_PATTERN = re.compile(
    r"(?i)[\"']?\b(access_token|refresh_token|id_token|client_secret)\b[\"']?\s*[:=]\s*[\"']?[^\"'&,\s}]+[\"']?"
)


def redact_sensitive_text(value: str | None) -> str:
    """Mask bearer credentials and OAuth token fields in provider text."""
    if not value:
        return ""
    out = _BEARER_PATTERN.sub("Bearer [REDACTED]", value)
    out = _TOKEN_FIELD_PATTERN.sub(lambda match: f"{match.group(1)}=[REDACTED]", out)
    return out

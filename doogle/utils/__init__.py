from typing import Iterable, List, Tuple

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "proxy-authorization"}


def mask_token(text: str, token: str) -> str:
    return text.replace(token, f"{token[:4]}****") if token else text


def redact_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Mask credential-bearing header values for debug logs."""
    return [
        (name, mask_token(value, value) if name.lower() in SENSITIVE_HEADERS else value)
        for name, value in headers
    ]

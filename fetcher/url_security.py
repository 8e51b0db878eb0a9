"""Canvas feed URL validation and masking."""
import re
from dataclasses import dataclass
from typing import Optional

_USER_TOKEN = re.compile(r'user_([A-Za-z0-9]{8,})')


@dataclass
class UrlValidationResult:
    is_valid: bool
    reason: Optional[str] = None


def mask_sensitive_url(text: str) -> str:
    """
    Mask Canvas user tokens in a URL or any text containing one.

    Keeps the first and last four characters of tokens longer than eight
    characters: ``user_abcd1234wxyz`` becomes ``user_abcd****wxyz``.

    Args:
        text: URL or message text

    Returns:
        Text with user tokens masked
    """
    def replace(match):
        token = match.group(1)
        if len(token) <= 8:
            return match.group(0)
        return f"user_{token[:4]}****{token[-4:]}"

    return _USER_TOKEN.sub(replace, text or '')


def clean_error_message(message: str, original_url: str) -> str:
    """Replace the raw feed URL in a message with its masked form and mask leftovers."""
    if original_url:
        message = message.replace(original_url, mask_sensitive_url(original_url))
    return mask_sensitive_url(message)


def validate_canvas_url(url: Optional[str]) -> UrlValidationResult:
    """
    Check that a URL looks like a Canvas ICS feed before fetching it.

    Args:
        url: User supplied feed URL

    Returns:
        UrlValidationResult with the reason when invalid
    """
    if not url or not url.strip():
        return UrlValidationResult(False, 'No Canvas calendar URL provided')

    if not url.startswith('https://'):
        return UrlValidationResult(False, 'Canvas URL must use HTTPS')

    if '.ics' not in url:
        return UrlValidationResult(False, 'URL must be an ICS calendar feed')

    if 'canvas' not in url and 'elearn' not in url and 'user_' not in url:
        return UrlValidationResult(False, 'URL does not appear to be a Canvas calendar feed')

    return UrlValidationResult(True)

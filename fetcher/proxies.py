"""CORS proxy adapters used to reach Canvas calendar feeds."""
from typing import Tuple
from urllib.parse import quote

import requests

from processor.errors import EmptyResponse


class ProxyAdapter:
    """Rewrites a feed URL through a relay and unwraps the relay's response."""

    name = 'proxy'
    security_level = 'medium'
    headers = {
        'Accept': 'application/json,text/plain,*/*',
        'Cache-Control': 'no-cache, no-store, must-revalidate'
    }

    def build_url(self, target: str) -> str:
        raise NotImplementedError

    def extract_body(self, response: requests.Response) -> str:
        """Return the proxied body as text."""
        return response.text


class CorsProxyIoAdapter(ProxyAdapter):
    """corsproxy.io returns the target body unchanged."""

    name = 'corsproxy.io'
    security_level = 'high'

    def build_url(self, target: str) -> str:
        return f"https://corsproxy.io/?{quote(target, safe='')}"


class AllOriginsAdapter(ProxyAdapter):
    """allorigins.win wraps the target body in a JSON ``contents`` field."""

    name = 'allorigins.win'
    security_level = 'medium'

    def build_url(self, target: str) -> str:
        return f"https://api.allorigins.win/get?url={quote(target, safe='')}"

    def extract_body(self, response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise EmptyResponse(f"{self.name} returned invalid JSON: {e}") from e

        contents = data.get('contents') if isinstance(data, dict) else None
        if not contents:
            raise EmptyResponse(f"No content in {self.name} wrapped response")
        return contents


class CorsShAdapter(ProxyAdapter):
    """cors.sh takes the target URL as its path and returns the body unchanged."""

    name = 'cors.sh'
    security_level = 'high'

    def build_url(self, target: str) -> str:
        return f"https://cors.sh/{target}"


class DirectAdapter(ProxyAdapter):
    """No relay; requests the feed itself."""

    name = 'direct'
    security_level = 'high'
    headers = {
        'Accept': 'text/calendar,text/plain,*/*',
        'User-Agent': 'CanvasCalendarSync/1.0',
        'Cache-Control': 'no-cache'
    }

    def build_url(self, target: str) -> str:
        return target


DEFAULT_PROXY_ADAPTERS: Tuple[ProxyAdapter, ...] = (
    CorsProxyIoAdapter(),
    AllOriginsAdapter(),
    CorsShAdapter(),
)

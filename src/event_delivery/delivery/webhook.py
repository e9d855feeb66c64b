"""
Module: webhook.py
Description: HTTP webhook delivery.

Implements form, JSON and multipart (file) POST delivery with a
per-request timeout. Every failure is raised as TransportError so the
channel adapters can turn it into a failed DeliveryResult.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from event_delivery.delivery.errors import TransportError
from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


class WebhookClient:
    """
    HTTP client for posting events to webhooks.

    A new httpx.AsyncClient is opened per request so each call carries its
    own timeout, bounded by the caller's remaining deadline.
    """

    def __init__(self, body_format: str = "form", default_timeout: float = 5.0):
        """
        Initialize webhook client.

        Args:
            body_format: 'form' for form-encoded bodies, 'json' for JSON bodies
            default_timeout: HTTP timeout in seconds when none is given

        Raises:
            ValueError: If body_format is unknown
        """
        if body_format not in ('form', 'json'):
            raise ValueError("body_format must be 'form' or 'json'")

        self.body_format = body_format
        self.default_timeout = default_timeout

    async def post(
        self,
        url: str,
        data: Dict[str, str],
        channel: str,
        file_path: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> int:
        """
        POST a payload to a webhook.

        Args:
            url: Destination URL
            data: Form fields; 'jsonData' carries the serialized event
            channel: Channel name used in errors and logs
            file_path: Optional file sent as multipart field 'file'
            timeout: Per-request timeout override in seconds

        Returns:
            HTTP status code of the 2xx response

        Raises:
            TransportError: On timeout, network error, non-2xx response or
                unreadable attachment
        """
        seconds = self.default_timeout if timeout is None else timeout
        if seconds <= 0:
            raise TransportError(channel, "no time left for request")

        request_kwargs = await self._build_request(data, channel, file_path)

        async with httpx.AsyncClient(timeout=httpx.Timeout(seconds)) as client:
            try:
                response = await client.post(url, **request_kwargs)
                response.raise_for_status()

            except httpx.TimeoutException:
                raise TransportError(channel, f"timeout after {seconds:.1f}s posting to {url}")

            except httpx.HTTPStatusError as e:
                raise TransportError(
                    channel,
                    f"HTTP {e.response.status_code} from {url}",
                    status_code=e.response.status_code
                )

            except httpx.HTTPError as e:
                raise TransportError(channel, f"{type(e).__name__}: {e}")

        logger.debug(
            "Webhook accepted event",
            channel=channel,
            url=url,
            status_code=response.status_code
        )
        return response.status_code

    async def _build_request(
        self,
        data: Dict[str, str],
        channel: str,
        file_path: Optional[str]
    ) -> Dict[str, Any]:
        if file_path:
            try:
                content = await asyncio.to_thread(Path(file_path).read_bytes)
            except OSError as e:
                raise TransportError(channel, f"cannot read attachment {file_path}: {e}")
            fields = dict(data)
            fields['file'] = file_path
            return {
                'data': fields,
                'files': {'file': (Path(file_path).name, content)},
            }

        if self.body_format == 'json':
            return {'json': self._json_body(data)}

        return {'data': data}

    @staticmethod
    def _json_body(data: Dict[str, str]) -> Dict[str, Any]:
        """
        Decode jsonData into the body and merge the token into it.

        Falls back to the plain form fields when jsonData is not a JSON object.
        """
        raw = data.get('jsonData')
        if raw is None:
            return dict(data)
        try:
            body = json.loads(raw)
        except ValueError:
            return dict(data)
        if not isinstance(body, dict):
            return dict(data)
        for key, value in data.items():
            if key != 'jsonData':
                body[key] = value
        return body

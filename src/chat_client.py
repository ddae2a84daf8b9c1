"""Chat Endpoint Client

This module provides ChatStreamClient, a thin transport for the hosted chat
function. It POSTs the conversation so far and hands back the raw response body
as an iterator of byte chunks; parsing the server-sent-event lines is left to
src.sse_parser.

Environment variables: CHAT_FUNCTION_URL, CHAT_API_KEY, CHAT_TIMEOUT_SECONDS
"""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Union

import requests
import structlog

from src.backend.utils.errors import (
    ChatEndpointError,
    ConfigurationError,
    StreamTransportError,
)
from src.models.social_models import Message

DEFAULT_TIMEOUT_SECONDS = 60

REQUIRED_ENV_VARS = ("CHAT_FUNCTION_URL", "CHAT_API_KEY")


def _get_logger():
    """Get logger instance (allows for easier mocking in tests)."""
    return structlog.get_logger()


class ChatTransport(Protocol):
    """Anything that can open a chat stream for a list of messages."""

    def open_stream(self, messages: List[Dict[str, str]]) -> Iterator[bytes]:
        ...


def load_env_vars(keys: Iterable[str], env_path: Optional[Path] = None) -> Dict[str, Optional[str]]:
    """Read settings from the environment, falling back to a .env file.

    Environment variables win; the .env file (default ./.env) only fills keys the
    environment leaves unset.

    Args:
        keys: Variable names to read
        env_path: Path of the .env file

    Returns:
        Dictionary of key -> value (None where the key was found nowhere)
    """
    values = {key: os.getenv(key) for key in keys}

    if not all(values.values()):
        env_path = env_path or Path.cwd() / '.env'
        if env_path.exists():
            with open(env_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#') or '=' not in line:
                        continue
                    key, value = line.split('=', 1)
                    key = key.strip()
                    if key in values and not values[key]:
                        values[key] = value.strip().strip('"').strip("'")

    return values


def _error_message(response: requests.Response) -> str:
    """Extract the endpoint's {error: string} message, or fall back to 'Error <status>'."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Error {response.status_code}"


class ChatStreamClient:
    """Bearer-authenticated client for the streaming chat endpoint.

    Attributes:
        url: Chat function URL
        api_key: Bearer token sent in the Authorization header
        timeout: Connect/read timeout in seconds

    Example:
        >>> client = ChatStreamClient.from_env()
        >>> for chunk in client.open_stream([{"role": "user", "content": "Hi"}]):
        ...     state, fragments = feed(state, chunk)
    """

    def __init__(self, url: str, api_key: str, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        if not url:
            raise ConfigurationError("Chat endpoint URL is required")
        if not api_key:
            raise ConfigurationError("Chat API key is required")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "ChatStreamClient":
        """Build a client from CHAT_FUNCTION_URL / CHAT_API_KEY (env or .env).

        Raises:
            ConfigurationError: If either variable is missing
        """
        values = load_env_vars(REQUIRED_ENV_VARS + ("CHAT_TIMEOUT_SECONDS",), env_path)

        missing = [key for key in REQUIRED_ENV_VARS if not values[key]]
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} not found in environment or .env file"
            )

        timeout = float(values["CHAT_TIMEOUT_SECONDS"] or DEFAULT_TIMEOUT_SECONDS)
        return cls(values["CHAT_FUNCTION_URL"], values["CHAT_API_KEY"], timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def open_stream(self, messages: List[Union[Message, Dict[str, Any]]]) -> Iterator[bytes]:
        """POST the conversation and return an iterator over the response body.

        The request is made eagerly, so a non-success status is reported before any
        chunk is read. The returned iterator closes the response when exhausted or
        when reading fails.

        Args:
            messages: Conversation so far, as Message objects or {role, content} dicts

        Returns:
            Iterator of raw byte chunks as they arrive

        Raises:
            ChatEndpointError: Non-200 status (message from the body's 'error' field)
            StreamTransportError: Connection failure, or read failure while iterating
        """
        payload = {
            "messages": [
                m.to_payload() if isinstance(m, Message) else {"role": m["role"], "content": m["content"]}
                for m in messages
            ]
        }

        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=self._headers(),
                stream=True,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            _get_logger().error("chat_request_failed", url=self.url, error=str(e))
            raise StreamTransportError(f"Failed to reach chat endpoint: {e}") from e

        if response.status_code != 200:
            message = _error_message(response)
            response.close()
            _get_logger().warning(
                "chat_endpoint_error",
                status_code=response.status_code,
                error=message
            )
            raise ChatEndpointError(message, status_code=response.status_code)

        _get_logger().debug("chat_stream_opened", message_count=len(payload["messages"]))
        return self._iter_chunks(response)

    def _iter_chunks(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            _get_logger().error("chat_stream_interrupted", error=str(e))
            raise StreamTransportError(str(e)) from e
        finally:
            response.close()

#!/usr/bin/env python3
"""Home Assistant WebSocket client: request/response over a single socket."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import websockets

from .config import ConnectionConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class HomeAssistantWebSocketClient:
    """WebSocket client for Home Assistant.

    Only one request is in flight at a time: the engine and the state
    tracker share this client, and a websocket cannot be read by two
    coroutines at once.
    """

    def __init__(
        self,
        host: str,
        port: int,
        access_token: str,
        use_ssl: bool = False,
        url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            host: Home Assistant host
            port: Home Assistant port
            access_token: Long-lived access token
            use_ssl: Whether to use SSL/TLS
            url: Full websocket URL, overrides host/port
            timeout: Seconds to wait for each response
        """
        self.host = host
        self.port = port
        self.access_token = access_token
        self.use_ssl = use_ssl
        self.url = url
        self.timeout = timeout
        self.websocket = None
        self.message_id = 1
        # Created lazily in the running event loop
        self._request_lock: Optional[asyncio.Lock] = None
        self.connection_lost: Optional[asyncio.Event] = None

    @classmethod
    def from_config(cls, config: ConnectionConfig, timeout: float = DEFAULT_TIMEOUT) -> "HomeAssistantWebSocketClient":
        return cls(
            config.host,
            config.port,
            config.access_token,
            use_ssl=config.use_ssl,
            url=config.url,
            timeout=timeout,
        )

    @property
    def websocket_url(self) -> str:
        """Get the WebSocket URL."""
        if self.url:
            return self.url
        protocol = "wss" if self.use_ssl else "ws"
        return f"{protocol}://{self.host}:{self.port}/api/websocket"

    @property
    def connected(self) -> bool:
        return self.websocket is not None

    def _get_next_message_id(self) -> int:
        """Get the next message ID."""
        current_id = self.message_id
        self.message_id += 1
        return current_id

    async def connect(self) -> None:
        """Open the socket and authenticate.

        Raises:
            ConnectionError: when the socket cannot be opened or auth fails.
        """
        if self._request_lock is None:
            self._request_lock = asyncio.Lock()
        self.connection_lost = asyncio.Event()

        logger.info(f"Connecting to {self.websocket_url}")
        try:
            self.websocket = await websockets.connect(
                self.websocket_url, max_size=None, open_timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ConnectionError(f"Cannot connect to {self.websocket_url}: {e}") from e

        if not await self.authenticate():
            await self.close()
            raise ConnectionError("Failed to authenticate with Home Assistant")

    async def close(self) -> None:
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close()

    async def authenticate(self) -> bool:
        """Authenticate with Home Assistant."""
        try:
            auth_required = json.loads(await self._recv_auth())

            if auth_required.get("type") != "auth_required":
                logger.error(f"Unexpected message type: {auth_required.get('type')}")
                return False

            await self.websocket.send(json.dumps({
                "type": "auth",
                "access_token": self.access_token
            }))

            result_msg = json.loads(await self._recv_auth())

            if result_msg.get("type") == "auth_ok":
                logger.info("Successfully authenticated with Home Assistant")
                return True
            logger.error(f"Authentication failed: {result_msg}")
            return False

        except asyncio.TimeoutError:
            logger.error(f"Timed out after {self.timeout}s waiting for Home Assistant to authenticate")
            return False
        except (websockets.exceptions.ConnectionClosed, json.JSONDecodeError) as e:
            logger.error(f"Authentication error: {e}")
            return False

    async def _recv_auth(self) -> str:
        return await asyncio.wait_for(self.websocket.recv(), timeout=self.timeout)

    def _mark_lost(self, reason: str) -> None:
        logger.warning(f"WebSocket connection lost: {reason}")
        self.websocket = None
        if self.connection_lost is not None:
            self.connection_lost.set()

    async def send_message_wait_response(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Send a command and return the full result envelope.

        Returns None when not connected, on timeout or on connection loss.
        """
        if not self.websocket:
            logger.error("WebSocket not connected")
            return None
        if self._request_lock is None:
            self._request_lock = asyncio.Lock()

        async with self._request_lock:
            message = dict(message)
            message["id"] = self._get_next_message_id()
            msg_id = message["id"]

            try:
                await self.websocket.send(json.dumps(message))
            except websockets.exceptions.ConnectionClosed as e:
                self._mark_lost(str(e))
                return None

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.timeout

            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.error(f"Timeout waiting for response to message id={msg_id}")
                    return None

                try:
                    frame = await asyncio.wait_for(self.websocket.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    logger.error(f"Timeout waiting for response to message id={msg_id}")
                    return None
                except websockets.exceptions.ConnectionClosed as e:
                    self._mark_lost(str(e))
                    return None

                try:
                    data = json.loads(frame)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON frame while waiting for id={msg_id}: {frame!r}")
                    continue

                # Ignore unrelated frames
                if data.get("id") != msg_id:
                    continue

                if data.get("type") == "result" and not data.get("success", False):
                    logger.error(f"Error response to id={msg_id}: {data.get('error')}")
                return data

    async def _request(self, message: Dict[str, Any]) -> Optional[Any]:
        data = await self.send_message_wait_response(message)
        if data and data.get("type") == "result" and data.get("success", False):
            return data.get("result")
        return None

    async def get_states(self) -> Optional[List[Dict[str, Any]]]:
        """Get all entity states, or None if the request failed."""
        result = await self._request({"type": "get_states"})
        if isinstance(result, list):
            logger.debug(f"Loaded {len(result)} entity states")
            return result
        logger.error(f"Failed to get states or invalid response: {type(result)}")
        return None

    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: Dict[str, Any],
        target: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Call a Home Assistant service.

        Returns:
            The result envelope on success, None on failure.
        """
        service_msg: Dict[str, Any] = {
            "type": "call_service",
            "domain": domain,
            "service": service,
        }
        if service_data:
            service_msg["service_data"] = service_data
        if target:
            service_msg["target"] = target

        logger.debug(f"Sending service call: {domain}.{service}")
        data = await self.send_message_wait_response(service_msg)
        if data and data.get("success", False):
            return data
        return None

    async def get_config(self) -> Optional[Dict[str, Any]]:
        """Get Home Assistant configuration (latitude, longitude, time_zone, ...)."""
        logger.info("Requesting Home Assistant configuration...")
        result = await self._request({"type": "get_config"})
        if isinstance(result, dict):
            return result
        logger.error(f"Failed to get config or invalid response type: {type(result)}")
        return None

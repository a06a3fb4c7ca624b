#!/usr/bin/env python3
"""Home Assistant WebSocket client - feeds fade events to the scheduler."""

import asyncio
import itertools
import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional

import websockets
import websockets.exceptions

from .const import KEY_DATA, KEY_PAYLOAD, KEY_SERVICE
from .options import get_tzinfo, load_options
from .scheduler import FadeScheduler
from .suntimes import provider_for
from .webserver import FadeWebServer

logger = logging.getLogger(__name__)


class HomeAssistantWebSocketClient:
    """WebSocket client for Home Assistant."""

    def __init__(self, host: str, port: int, access_token: str, use_ssl: bool = False,
                 options: Optional[Dict[str, Any]] = None):
        """Initialize the client.

        Args:
            host: Home Assistant host
            port: Home Assistant port
            access_token: Long-lived access token
            use_ssl: Whether to use SSL/TLS
            options: Merged add-on options (see options.load_options)
        """
        self.host = host
        self.port = port
        self.access_token = access_token
        self.use_ssl = use_ssl
        self.options = options or {}
        self.websocket = None
        self._message_ids = itertools.count(1)
        self.event_type = self.options.get("event_type", "fadelight")
        self.timezone = self.options.get("time_zone")  # May be replaced by HA config
        self.config_request_id = None
        self.scheduler = self._build_scheduler()

    def _build_scheduler(self) -> FadeScheduler:
        tzinfo = get_tzinfo(self.timezone)

        def clock() -> datetime:
            return datetime.now(tzinfo) if tzinfo else datetime.now().astimezone()

        return FadeScheduler.from_options(
            self.options,
            send=self.send_output,
            provider=provider_for(tzinfo or clock().tzinfo),
            clock=clock,
        )

    @property
    def websocket_url(self) -> str:
        """``HA_WEBSOCKET_URL`` when set (supervisor proxy), else host and port."""
        url = os.getenv("HA_WEBSOCKET_URL")
        if url:
            return url
        scheme = "wss" if self.use_ssl else "ws"
        return f"{scheme}://{self.host}:{self.port}/api/websocket"

    async def _send(self, message_type: str, **fields: Any) -> int:
        """Send a numbered command and return its id."""
        message_id = next(self._message_ids)
        await self.websocket.send(json.dumps({"id": message_id, "type": message_type, **fields}))
        return message_id

    async def _receive(self) -> Dict[str, Any]:
        message = json.loads(await self.websocket.recv())
        if not isinstance(message, dict):
            raise ValueError(f"Expected a JSON object, got {message!r}")
        return message

    async def authenticate(self) -> bool:
        """Run the auth_required -> auth -> auth_ok handshake."""
        try:
            greeting = await self._receive()
            if greeting.get("type") != "auth_required":
                logger.error(f"Expected auth_required, got {greeting.get('type')}")
                return False

            # The auth message is the one command sent without an id.
            await self.websocket.send(json.dumps({"type": "auth", "access_token": self.access_token}))

            reply = await self._receive()
        except (websockets.exceptions.WebSocketException, ValueError) as e:
            logger.error(f"Authentication error: {e}")
            return False

        if reply.get("type") != "auth_ok":
            logger.error(f"Authentication failed: {reply.get('message', reply.get('type'))}")
            return False
        logger.info(f"Authenticated with Home Assistant {reply.get('ha_version', '')}".rstrip())
        return True

    async def subscribe_events(self, event_type: Optional[str] = None) -> int:
        """Subscribe to *event_type*, or to every event when it is empty."""
        fields = {"event_type": event_type} if event_type else {}
        message_id = await self._send("subscribe_events", **fields)
        logger.info(f"Subscribed to {event_type or 'all'} events (id: {message_id})")
        return message_id

    async def call_service(self, domain: str, service: str, service_data: Dict[str, Any]) -> int:
        message_id = await self._send("call_service", domain=domain, service=service, service_data=service_data)
        logger.debug(f"{domain}.{service} {service_data} (id: {message_id})")
        return message_id

    async def get_config(self) -> int:
        """Request Home Assistant's configuration; the result sets the time zone."""
        self.config_request_id = await self._send("get_config")
        return self.config_request_id

    @staticmethod
    def service_call_for(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Translate an output record into call_service arguments.

        ``payload.domain`` defaults to ``light``; ``payload.target`` (entity_id,
        area_id, ...) is merged into the service data.  Returns None when the
        record names no service.
        """
        payload = record.get(KEY_PAYLOAD)
        if not isinstance(payload, dict):
            return None

        service = payload.get(KEY_SERVICE)
        if service is True or service == "on":
            service = "turn_on"
        if not isinstance(service, str) or not service:
            return None

        service_data: Dict[str, Any] = {}
        target = payload.get("target")
        if isinstance(target, dict):
            service_data.update(target)
        data = payload.get(KEY_DATA)
        if isinstance(data, dict):
            service_data.update(data)

        return {
            "domain": payload.get("domain", "light"),
            "service": service,
            "service_data": service_data,
        }

    async def send_output(self, record: Dict[str, Any]) -> None:
        """Deliver a scheduler output record to Home Assistant."""
        call = self.service_call_for(record)
        if call is None:
            logger.debug(f"Output without a service, nothing to call: {record.get('topic')}")
            return
        if self.websocket is None:
            logger.warning(f"Not connected, dropping {call['domain']}.{call['service']}")
            return
        await self.call_service(call["domain"], call["service"], call["service_data"])

    def apply_config(self, result: Dict[str, Any]) -> None:
        """Adopt Home Assistant's time zone unless one is configured."""
        time_zone = result.get("time_zone")
        logger.info(f"Home Assistant location: lat={result.get('latitude')}, "
                    f"lon={result.get('longitude')}, tz={time_zone}")
        if time_zone and not self.options.get("time_zone") and time_zone != self.timezone:
            self.timezone = time_zone
            tzinfo = get_tzinfo(time_zone)
            if tzinfo is not None:
                self.scheduler.clock = lambda: datetime.now(tzinfo)
                self.scheduler.provider = provider_for(tzinfo)

    async def handle_message(self, message: Dict[str, Any]):
        """Handle incoming messages."""
        msg_type = message.get("type")

        if msg_type == "event":
            event = message.get("event", {})
            event_type = event.get("event_type", "unknown")
            event_data = event.get("data", {})

            logger.debug(f"Event received: {event_type}")

            if event_type == self.event_type:
                if not isinstance(event_data, dict):
                    logger.warning(f"Ignoring {event_type} event with non-object data")
                    return
                await self.scheduler.handle(event_data)

        elif msg_type == "result":
            msg_id = message.get("id")
            success = message.get("success", False)
            result = message.get("result")

            if msg_id == self.config_request_id and isinstance(result, dict):
                self.apply_config(result)

            logger.debug(f"Result for message {msg_id}: {'success' if success else 'failed'}")

        else:
            logger.debug(f"Received message type: {msg_type}")

    async def listen(self):
        """Main listener loop."""
        try:
            logger.info(f"Connecting to {self.websocket_url}")

            async with websockets.connect(self.websocket_url) as websocket:
                self.websocket = websocket

                if not await self.authenticate():
                    logger.error("Failed to authenticate")
                    return

                # Get Home Assistant configuration (tz)
                await self.get_config()

                await self.subscribe_events(self.event_type)

                logger.info("Listening for events...")
                async for message in websocket:
                    try:
                        msg = json.loads(message)
                        await self.handle_message(msg)
                    except json.JSONDecodeError:
                        logger.error(f"Failed to decode message: {message}")
                    except Exception as e:
                        logger.error(f"Error handling message: {e}")

        except websockets.exceptions.ConnectionClosed:
            logger.warning("WebSocket connection closed")
        except OSError as e:
            logger.error(f"Connection error: {e}")
        finally:
            self.websocket = None

    async def run(self):
        """Run the client with automatic reconnection."""
        reconnect_interval = 5

        try:
            while True:
                await self.listen()
                logger.info(f"Reconnecting in {reconnect_interval} seconds...")
                await asyncio.sleep(reconnect_interval)
        finally:
            await self.scheduler.shutdown()


async def run_service(client: HomeAssistantWebSocketClient, web_port: int):
    """Run the websocket client and the web UI together."""
    server = FadeWebServer(client.scheduler, port=web_port)
    runner = await server.start()
    try:
        await client.run()
    finally:
        await runner.cleanup()


def main():
    """Main entry point."""
    options = asyncio.run(load_options())

    logging.basicConfig(
        level=getattr(logging, options["log_level"].upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Get configuration from environment variables
    host = os.getenv("HA_HOST", "localhost")
    port = int(os.getenv("HA_PORT", "8123"))
    token = os.getenv("HA_TOKEN")
    use_ssl = os.getenv("HA_USE_SSL", "false").lower() == "true"

    if not token:
        logger.error("HA_TOKEN environment variable is required")
        logger.info("Please set HA_TOKEN with your Home Assistant long-lived access token")
        sys.exit(1)

    client = HomeAssistantWebSocketClient(host, port, token, use_ssl, options=options)

    try:
        asyncio.run(run_service(client, options["web_port"]))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()

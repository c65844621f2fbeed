"""WebSocket feed of session state for read-only UI consumers."""

import asyncio
import json
from typing import Any

import structlog
import websockets
from websockets import ConnectionClosed
from websockets.asyncio.server import Server, ServerConnection

from .director import SessionDirector
from .hexgrid import GridBounds
from .reconcile import Occurrence
from .state import PlayerState

logger = structlog.get_logger()


class ViewerWebSocketService:
    """
    WebSocket service streaming the player's state to browser clients.

    Clients receive a snapshot on connect, then ``state`` messages whenever the
    director changes local state and ``occurrence`` messages for changes the
    reconciliation loop detected. Registers itself as a director listener.
    """

    def __init__(
        self,
        director: SessionDirector,
        host: str = "127.0.0.1",
        port: int = 8765,
    ):
        self.director = director
        self.host = host
        self.port = port
        self._clients: set[ServerConnection] = set()
        self._server: Server | None = None
        self._broadcast_queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._broadcast_task: asyncio.Task[None] | None = None
        director.add_listener(self)

    @property
    def bounds(self) -> GridBounds:
        return self.director.config.grid

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await websockets.serve(
            self._handle_client,
            self.host,
            self.port,
        )
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        logger.info("viewer_ws_started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop the WebSocket server and close all connections."""
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.info("viewer_ws_stopped")

        for client in list(self._clients):
            try:
                await client.close()
            except ConnectionClosed:
                pass
        self._clients.clear()
        self.director.remove_listener(self)

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """Send a snapshot, then answer snapshot requests until the client leaves."""
        self._clients.add(websocket)
        client_id = id(websocket)
        logger.info("viewer_client_connected", client_id=client_id)

        try:
            await websocket.send(json.dumps(self._generate_snapshot()))
            async for message in websocket:
                await self._handle_message(client_id, websocket, message)
        except ConnectionClosed:
            logger.debug("viewer_client_disconnected", client_id=client_id)
        except Exception as e:
            logger.warning("viewer_client_error", client_id=client_id, error=str(e))
        finally:
            self._clients.discard(websocket)

    async def _handle_message(
        self, client_id: int, websocket: ServerConnection, raw_message: str
    ) -> None:
        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError:
            logger.warning("invalid_json", client_id=client_id)
            return

        msg_type = message.get("type") if isinstance(message, dict) else None
        if msg_type == "get_snapshot":
            await self._send_to_client(websocket, self._generate_snapshot())
        else:
            logger.debug("viewer_message_received", client_id=client_id, type=msg_type)

    async def _send_to_client(self, websocket: ServerConnection, message: dict[str, Any]) -> None:
        try:
            await websocket.send(json.dumps(message))
        except ConnectionClosed:
            self._clients.discard(websocket)

    async def _broadcast_loop(self) -> None:
        """Background task that broadcasts events from the queue."""
        while True:
            event = await self._broadcast_queue.get()
            await self._broadcast_event(event)

    async def _broadcast_event(self, event: dict[str, Any]) -> None:
        """Broadcast an event to all connected clients."""
        if not self._clients:
            return

        message = json.dumps(event)
        disconnected: list[ServerConnection] = []

        for client in self._clients:
            try:
                await client.send(message)
            except ConnectionClosed:
                disconnected.append(client)
            except Exception as e:
                logger.warning("broadcast_error", error=str(e))
                disconnected.append(client)

        for client in disconnected:
            self._clients.discard(client)

    def broadcast_event(self, event: dict[str, Any]) -> None:
        """Queue an event for broadcast (non-blocking)."""
        self._broadcast_queue.put_nowait(event)

    def _generate_snapshot(self) -> dict[str, Any]:
        bounds = self.bounds
        return {
            "type": "snapshot",
            "grid": {
                "width": bounds.width,
                "height": bounds.height,
                "min_q": bounds.min_q,
                "min_r": bounds.min_r,
            },
            "is_moving": self.director.is_moving,
            "player": self.director.state.snapshot(),
        }

    def on_state_change(self, state: PlayerState) -> None:
        self.broadcast_event({
            "type": "state",
            "is_moving": self.director.is_moving,
            "player": state.snapshot(),
        })

    def on_occurrence(self, occurrence: Occurrence) -> None:
        event = {"type": "occurrence", "game_id": self.director.state.game_id}
        event.update(occurrence.to_dict())
        self.broadcast_event(event)

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)

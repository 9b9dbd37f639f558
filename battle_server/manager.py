from fastapi import WebSocket
from typing import List, Dict
from uuid import UUID
import logging


class ConnectionManager:
    """WebSocket connections of a battle's viewers; delivers chat log entries."""

    def __init__(self):
        self.active_connections: Dict[UUID, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, battle_id: UUID):
        """Connects a websocket to a battle_id

        Args:
            websocket (WebSocket): Viewer connection
            battle_id (UUID): Battle to receive chat from
        """
        await websocket.accept()
        if battle_id not in self.active_connections:
            self.active_connections[battle_id] = []
        self.active_connections[battle_id].append(websocket)

    def disconnect(self, websocket: WebSocket, battle_id: UUID):
        """Disconnects a websocket from a battle_id

        Args:
            websocket (WebSocket): Viewer connection
            battle_id (UUID): Battle the viewer was watching
        """
        if battle_id in self.active_connections:
            if websocket in self.active_connections[battle_id]:
                self.active_connections[battle_id].remove(websocket)
            # Clean up if there are no more connections for this battle_id
            if not self.active_connections[battle_id]:
                del self.active_connections[battle_id]

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        await websocket.send_json(message)

    async def broadcast(self, message: dict, battle_id: UUID):
        logging.debug(f"Broadcasting message to battle_id: {battle_id}")
        for connection in list(self.active_connections.get(battle_id, [])):
            try:
                await connection.send_json(message)
            except RuntimeError as e:
                logging.warning(f"Dropping closed connection for battle {battle_id}: {e}")
                self.disconnect(connection, battle_id)

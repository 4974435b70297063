from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field


class Client(BaseModel):
    id: str


class Room(BaseModel):
    id: str
    clients: Dict[str, Client] = Field(default_factory=dict)
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())

    def add(self, client: Client) -> None:
        self.clients[client.id] = client

    def remove(self, client_id: str) -> None:
        self.clients.pop(client_id, None)

    def has(self, client_id: str) -> bool:
        return client_id in self.clients

    def client_ids(self) -> List[str]:
        return sorted(self.clients)

    def copy_room(self) -> "Room":
        return self.model_copy(deep=True)


class RoomSummary(BaseModel):
    room_id: str
    client_count: int
    created_at: str

class RoomDetailsResponse(BaseModel):
    room_id: str
    created_at: str
    client_ids: List[str]
    client_count: int

class HealthResponse(BaseModel):
    status: str
    rooms: int
    sessions: int

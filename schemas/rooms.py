from pydantic import BaseModel
from typing import Dict, Optional


class RoomMember(BaseModel):
    session_id: str
    role: Optional[str] = None
    publisher_key: Optional[str] = None
    connected_at: str

class RoomSummary(BaseModel):
    room: str
    members_count: int
    publishers_count: int

class RoomListResponse(BaseModel):
    sessions_count: int
    rooms: list[RoomSummary]

class RoomDetailsResponse(BaseModel):
    room: str
    members_count: int
    members: list[RoomMember]
    publishers: Dict[str, str]

class HealthResponse(BaseModel):
    status: str
    timestamp: str

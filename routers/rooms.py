from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import RoomDetailsResponse, RoomListResponse, RoomMember, RoomSummary
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("", response_model=RoomListResponse)
async def list_rooms(request: Request):
    registry = request.app.state.registry
    logger.debug(f"Room list request from {request.client.host if request.client else 'unknown'}")

    async with registry.lock:
        rooms = [
            RoomSummary(
                room=name,
                members_count=len(registry.room_members(name)),
                publishers_count=len(registry.room_directory(name)),
            )
            for name in registry.room_names()
        ]
        sessions_count = registry.session_count()

    return RoomListResponse(sessions_count=sessions_count, rooms=rooms)


@rooms_router.get("/{room}", response_model=RoomDetailsResponse)
async def get_room_details(room: str, request: Request):
    """
    Current members of a room and its publisher directory.

    Returns:
    - room: Room name
    - members_count: Number of connected sessions in the room
    - members: session_id, role, publisher_key and connected_at per member
    - publishers: publisher key -> owning session id
    """
    registry = request.app.state.registry

    async with registry.lock:
        members = registry.room_members(room)
        if not members:
            logger.info(f"Room details failed: Room {room} not found")
            raise HTTPException(status_code=404, detail="Room not found")
        publishers = registry.room_directory(room)
        member_list = [
            RoomMember(
                session_id=member.id,
                role=member.role.value if member.role else None,
                publisher_key=member.directory_key,
                connected_at=member.connected_at,
            )
            for member in members
        ]

    logger.debug(f"Room details retrieved for {room}: {len(member_list)} members, {len(publishers)} publishers")

    return RoomDetailsResponse(
        room=room,
        members_count=len(member_list),
        members=member_list,
        publishers=publishers,
    )

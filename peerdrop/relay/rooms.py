"""
Room membership registry for the signaling relay.
"""
import asyncio
import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..core.logging import LoggerMixin, debug_log


@dataclass
class Room:
    """A rendezvous group. Exists only while it has participants."""
    room_id: str
    participants: Set[str] = field(default_factory=set)
    created_at: datetime.datetime = field(default_factory=datetime.datetime.now)


class RoomRegistry(LoggerMixin):
    """Owns the room table. Every mutation runs under a single lock."""
    
    def __init__(self):
        super().__init__()
        self._lock = asyncio.Lock()
        self._rooms: Dict[str, Room] = {}
        # participant_id -> room ids, so leave() need not scan every room
        self._memberships: Dict[str, Set[str]] = {}
    
    async def join(self, participant_id: str, room_id: str) -> Tuple[List[str], bool]:
        """Add a participant to a room, creating the room if needed.
        
        Returns the other members snapshotted at join time and whether the
        participant was newly added (False when it was already a member).
        """
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room
                debug_log(f"🏠 [Rooms] Room created", {"room_id": room_id})
            
            added = participant_id not in room.participants
            room.participants.add(participant_id)
            self._memberships.setdefault(participant_id, set()).add(room_id)
            
            others = sorted(p for p in room.participants if p != participant_id)
            
            debug_log(f"🏠 [Rooms] Participant joined", {
                "room_id": room_id,
                "participant_id": participant_id,
                "participants": len(room.participants)
            })
            return others, added
    
    async def leave(self, participant_id: str) -> Dict[str, List[str]]:
        """Remove a participant from every room it belongs to.
        
        Returns ``{room_id: remaining_members}`` for each room it left. Rooms
        left empty are deleted and map to an empty list.
        """
        async with self._lock:
            affected: Dict[str, List[str]] = {}
            for room_id in self._memberships.pop(participant_id, set()):
                room = self._rooms.get(room_id)
                if room is None or participant_id not in room.participants:
                    continue
                
                room.participants.discard(participant_id)
                affected[room_id] = sorted(room.participants)
                
                if not room.participants:
                    del self._rooms[room_id]
                    debug_log(f"🏠 [Rooms] Room deleted (empty)", {"room_id": room_id})
                else:
                    debug_log(f"🏠 [Rooms] Participant left", {
                        "room_id": room_id,
                        "participant_id": participant_id,
                        "remaining": len(room.participants)
                    })
            return affected
    
    async def members(self, room_id: str) -> List[str]:
        """Snapshot of a room's participants (empty if the room does not exist)."""
        async with self._lock:
            room = self._rooms.get(room_id)
            return sorted(room.participants) if room else []
    
    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)
    
    def rooms_of(self, participant_id: str) -> Set[str]:
        return set(self._memberships.get(participant_id, set()))
    
    def get_room_count(self) -> int:
        return len(self._rooms)
    
    def get_participant_count(self) -> int:
        return len(self._memberships)
    
    def get_status(self) -> Dict[str, int]:
        """Room id -> participant count."""
        return {room_id: len(room.participants) for room_id, room in self._rooms.items()}

"""In-memory presence bookkeeping.

Room membership is keyed by user id, not by socket. Keys are created on
first join and removed once their member set becomes empty. Reads for an
unknown key return an empty list: "nobody is here" is a normal state.
"""
from __future__ import annotations

from typing import Dict, Iterator, List, Set


class RoomMembership:
    """room key -> set of user ids."""

    def __init__(self) -> None:
        self._members: Dict[str, Set[str]] = {}

    def add(self, key: str, user_id: str) -> None:
        self._members.setdefault(key, set()).add(user_id)

    def discard(self, key: str, user_id: str) -> bool:
        """Remove ``user_id`` from ``key``; returns whether it was present."""
        members = self._members.get(key)
        if members is None or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            del self._members[key]
        return True

    def members(self, key: str) -> List[str]:
        """Sorted snapshot of ``key``'s members (empty when unknown)."""
        return sorted(self._members.get(key, ()))

    def has_member(self, key: str, user_id: str) -> bool:
        return user_id in self._members.get(key, ())

    def rooms_of(self, user_id: str) -> List[str]:
        return [key for key, members in self._members.items() if user_id in members]

    def clear(self) -> None:
        self._members.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._members))

    def __len__(self) -> int:
        return len(self._members)


class PresenceState:
    """Plan rooms, node rooms and typing indicators of one server process."""

    def __init__(self) -> None:
        self.plans = RoomMembership()
        self.nodes = RoomMembership()
        self.typing = RoomMembership()

    def forget_typing(self, user_id: str) -> List[str]:
        """Drop ``user_id`` from every typing set; returns the affected node ids."""
        nodes = self.typing.rooms_of(user_id)
        for node_id in nodes:
            self.typing.discard(node_id, user_id)
        return nodes

    def clear(self) -> None:
        self.plans.clear()
        self.nodes.clear()
        self.typing.clear()

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Protocol

from .model import ActorId, ChannelId


class IdentityProvider(Protocol):
    def is_owner(self, actor_id: ActorId) -> bool: ...

    async def missing_permissions(
        self,
        *,
        channel_id: ChannelId,
        actor_id: ActorId,
        required: Sequence[str],
    ) -> list[str]: ...


class StaticIdentity:
    """Identity provider backed by fixed owner ids and a permission table.

    `grants` maps `(channel_id, actor_id)` or `actor_id` to the permission
    names the actor holds; channel-specific entries win.
    """

    def __init__(
        self,
        *,
        owner_ids: Iterable[ActorId] = (),
        grants: Mapping[object, Iterable[str]] | None = None,
    ) -> None:
        self._owner_ids = frozenset(owner_ids)
        self._grants = {
            key: frozenset(value.lower() for value in values)
            for key, values in (grants or {}).items()
        }

    @property
    def owner_ids(self) -> frozenset[ActorId]:
        return self._owner_ids

    def is_owner(self, actor_id: ActorId) -> bool:
        return actor_id in self._owner_ids

    async def missing_permissions(
        self,
        *,
        channel_id: ChannelId,
        actor_id: ActorId,
        required: Sequence[str],
    ) -> list[str]:
        held = self._grants.get((channel_id, actor_id))
        if held is None:
            held = self._grants.get(actor_id, frozenset())
        return [name for name in required if name.lower() not in held]

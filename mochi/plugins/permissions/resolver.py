"""Resolve what a guild member is allowed to do.

A member belongs to every group which maps one of their roles. Their
effective permissions are the union of those groups' grants and the grants of
every group they inherit from, transitively. Discord administrators bypass
groups entirely.

Resolved sets are cached per (guild, member) for cache_ttl seconds. Any
group mutation drops the guild's cached sets, and member role changes drop
that member's.
"""
from dataclasses import dataclass
import logging
import time
import typing

from lru import LRU

from mochi.core import dcog, Cog

from . import nodes

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Member:
    """What authorization needs to know about a guild member."""
    guild_id: str
    member_id: str
    role_ids: typing.FrozenSet[str] = frozenset()
    administrator: bool = False

    @classmethod
    def from_discord(cls, member):
        return cls(
            guild_id=str(member.guild.id),
            member_id=str(member.id),
            role_ids=frozenset(str(role.id) for role in member.roles),
            administrator=member.guild_permissions.administrator,
        )


class PermissionCache:
    """Resolved permission sets, valid for ttl seconds after computation."""

    def __init__(self, ttl=300, size=4096, clock=time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._lru = LRU(size)

    def get(self, guild_id, member_id):
        key = (str(guild_id), str(member_id))
        try:
            permissions, computed_at = self._lru[key]
        except KeyError:
            return None
        if self.clock() - computed_at < self.ttl:
            return permissions
        del self._lru[key]
        return None

    def put(self, guild_id, member_id, permissions):
        self._lru[(str(guild_id), str(member_id))] = (
            frozenset(permissions), self.clock())

    def invalidate(self, guild_id, member_id=None):
        guild_id = str(guild_id)
        if member_id is not None:
            try:
                del self._lru[(guild_id, str(member_id))]
            except KeyError:
                pass
            return
        for key in list(self._lru.keys()):
            if key[0] == guild_id:
                del self._lru[key]

    def __contains__(self, key):
        return key in self._lru

    def __len__(self):
        return len(self._lru)


def collect_permissions(groups, group_keys, guild_id=None):
    """Union of grants of group_keys and everything they inherit from.

    Inheritance cycles are reported once per group and otherwise ignored.
    """
    collected = set()
    visited = set()
    warned = set()

    def visit(key, path):
        if key in path:
            if key not in warned:
                warned.add(key)
                log.warning(
                    "Inheritance cycle through group %s in guild %s: %s",
                    key, guild_id, " -> ".join(path + [key]))
            return
        if key in visited:
            # Reached again through another branch (a diamond), not a cycle.
            return
        visited.add(key)

        group = groups.get(key)
        if group is None:
            log.debug("Skipping unknown group %s in guild %s", key, guild_id)
            return

        collected.update(group.permissions)
        for parent in group.inherits:
            visit(parent, path + [key])

    for key in group_keys:
        visit(key, [])
    return collected


@dcog(depends=["PermissionGroups"])
class PermissionResolver(Cog):
    """Answers "may this member do that?"."""

    def __init__(self, config, groups, clock=time.monotonic):
        self.cache_ttl = config.register(
            "cache_ttl", default=300, validator=lambda ttl: ttl >= 0)
        self.cache_size = config.register(
            "cache_size", default=4096, validator=lambda size: size > 0)

        self.groups = groups
        self.cache = PermissionCache(
            ttl=self.cache_ttl(), size=self.cache_size(), clock=clock)
        groups.subscribe(self.on_groups_updated)

    def cog_unload(self):
        self.groups.unsubscribe(self.on_groups_updated)

    async def check(self, member: Member, node: str) -> bool:
        """Whether member holds the permission node."""
        if member.administrator:
            return True
        return nodes.grants(await self.resolve_permissions(member), node)

    async def resolve_permissions(self, member: Member) -> typing.FrozenSet[str]:
        cached = self.cache.get(member.guild_id, member.member_id)
        if cached is not None:
            return cached

        groups = await self.groups.get_all_groups(member.guild_id)
        if not groups:
            # Don't cache absence of configuration, it may show up any time.
            return frozenset()

        matched = [
            key for key, group in groups.items()
            if not group.role_ids.isdisjoint(member.role_ids)
        ]
        permissions = frozenset(
            collect_permissions(groups, matched, member.guild_id))
        self.cache.put(member.guild_id, member.member_id, permissions)
        return permissions

    def invalidate(self, guild_id, member_id=None):
        """Drop cached permissions for a member, or the entire guild."""
        self.cache.invalidate(guild_id, member_id)
        if member_id is None:
            log.debug("Permission cache invalidated for guild %s", guild_id)
        else:
            log.debug("Permission cache invalidated for member %s in guild %s",
                      member_id, guild_id)

    def on_groups_updated(self, guild_id):
        self.invalidate(guild_id)

    @Cog.listener()
    async def on_member_update(self, before, member):
        if {r.id for r in before.roles} != {r.id for r in member.roles}:
            self.invalidate(member.guild.id, member.id)

    @Cog.listener()
    async def on_member_remove(self, member):
        self.invalidate(member.guild.id, member.id)

    @Cog.listener()
    async def on_guild_role_delete(self, role):
        self.invalidate(role.guild.id)

"""Permission groups, stored in each guild's settings.

A group bundles discord role ids, granted permission nodes, and parent groups
whose grants it inherits:

{
    "permissionGroups": {
        "mods": {
            "name": "Moderators",
            "roleIds": ["1234"],
            "permissions": ["ticket.close", "moderation.*"],
            "inherits": ["helpers"]
        }
    }
}

Group keys are unique per guild, a group may not inherit from itself (directly
or through its parents), and a group can't be deleted while another group
inherits from it.
"""
from dataclasses import dataclass, field
import logging
import typing

from mochi.core import dcog, Cog
from mochi.plugins.guildsettings import InvalidSettings

log = logging.getLogger(__name__)

SECTION = "permissionGroups"


class GroupError(Exception):
    """Base for permission group invariant violations."""


class GroupExists(GroupError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"A permission group with key `{key}` already exists.")


class GroupNotFound(GroupError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"Permission group `{key}` not found.")


class GroupReferenced(GroupError):
    def __init__(self, key, referrers):
        self.key = key
        self.referrers = referrers
        super().__init__(
            f"Can't delete group `{key}`, it is inherited by "
            f"{', '.join(f'`{r}`' for r in referrers)}.")


class SelfInheritance(GroupError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"Group `{key}` can't inherit from itself.")


class UnknownParent(GroupError):
    def __init__(self, key, missing):
        self.key = key
        self.missing = missing
        super().__init__(
            f"Group `{key}` can't inherit from unknown groups: "
            f"{', '.join(f'`{m}`' for m in missing)}.")


class InheritanceCycle(GroupError):
    def __init__(self, key, parent):
        self.key = key
        self.parent = parent
        super().__init__(
            f"Group `{key}` can't inherit from `{parent}`, "
            f"`{parent}` already inherits from `{key}`.")


@dataclass
class PermissionGroup:
    name: str
    role_ids: typing.Set[str] = field(default_factory=set)
    permissions: typing.Set[str] = field(default_factory=set)
    inherits: typing.List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data):
        return cls(
            name=data["name"],
            role_ids=set(data.get("roleIds", [])),
            permissions=set(data.get("permissions", [])),
            inherits=list(data.get("inherits", [])),
        )

    def to_json(self):
        return {
            "name": self.name,
            "roleIds": sorted(self.role_ids),
            "permissions": sorted(self.permissions),
            "inherits": list(self.inherits),
        }


def validate_section(section):
    """Raise InvalidSettings if section isn't a well formed group mapping."""
    if not isinstance(section, dict):
        raise InvalidSettings(f"{SECTION} must be an object")
    for key, group in section.items():
        if not isinstance(group, dict):
            raise InvalidSettings(f"group {key} must be an object")
        if not isinstance(group.get("name"), str):
            raise InvalidSettings(f"group {key} needs a name")
        for list_key in ("roleIds", "permissions", "inherits"):
            values = group.get(list_key, [])
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise InvalidSettings(f"group {key}: {list_key} must be a list of strings")

    for key, group in section.items():
        for parent in group.get("inherits", []):
            if parent == key:
                raise InvalidSettings(f"group {key} inherits from itself")
            if parent not in section:
                raise InvalidSettings(f"group {key} inherits unknown group {parent}")
            if reaches(section, parent, key):
                raise InvalidSettings(
                    f"group {key} inherits {parent}, which inherits {key}")


def reaches(groups, start, target):
    """Whether target is start, or an ancestor of start via inherits."""
    stack = [start]
    seen = set()
    while stack:
        key = stack.pop()
        if key == target:
            return True
        if key in seen:
            continue
        seen.add(key)
        group = groups.get(key)
        if group:
            stack.extend(group.get("inherits", []))
    return False


@dcog(depends=["GuildSettings"])
class PermissionGroups(Cog):
    """CRUD over a guild's permission groups."""

    def __init__(self, config, settings):
        del config
        self.settings = settings
        self._subscribers = []
        settings.register(SECTION, validate_section, self._on_section_updated)

    def cog_unload(self):
        self.settings.unregister(SECTION)

    def subscribe(self, callback):
        """Call callback(guild_id) after every successful mutation."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback):
        self._subscribers.remove(callback)

    def _on_section_updated(self, guild_id, value):
        del value
        # The change is on disk by now, report failures and carry on.
        for callback in list(self._subscribers):
            try:
                callback(guild_id)
            except Exception:
                log.exception("Group update subscriber %r failed for guild %s",
                              callback, guild_id)

    async def get_group(self, guild_id, key) -> typing.Optional[PermissionGroup]:
        groups = await self.settings.get_section(guild_id, SECTION)
        if not groups or key not in groups:
            return None
        return PermissionGroup.from_json(groups[key])

    async def get_all_groups(self, guild_id) -> typing.Optional[typing.Dict[str, PermissionGroup]]:
        """All of the guild's groups, or None if it never configured any."""
        groups = await self.settings.get_section(guild_id, SECTION)
        if groups is None:
            return None
        return {key: PermissionGroup.from_json(data) for key, data in groups.items()}

    async def search_groups(self, guild_id, query, limit=25):
        """(label, key) pairs of groups whose key contains query."""
        groups = await self.get_all_groups(guild_id) or {}
        query = query.lower()
        return [
            (f"{group.name} ({key})", key)
            for key, group in groups.items() if query in key.lower()
        ][:limit]

    async def _edit_group(self, guild_id, key, edit):
        """Apply edit to the group, raising if it doesn't exist."""
        def mutate(groups):
            if key not in groups:
                raise GroupNotFound(key)
            group = PermissionGroup.from_json(groups[key])
            edit(group)
            groups[key] = group.to_json()
            return groups
        await self.settings.update(guild_id, SECTION, mutate)

    async def create_group(self, guild_id, key, name):
        def mutate(groups):
            if key in groups:
                raise GroupExists(key)
            groups[key] = PermissionGroup(name=name).to_json()
            return groups
        await self.settings.update(guild_id, SECTION, mutate)
        log.info("Permission group %s created for guild %s", key, guild_id)

    async def delete_group(self, guild_id, key):
        def mutate(groups):
            if key not in groups:
                raise GroupNotFound(key)
            referrers = sorted(
                other for other, group in groups.items()
                if other != key and key in group.get("inherits", [])
            )
            if referrers:
                raise GroupReferenced(key, referrers)
            del groups[key]
            return groups
        await self.settings.update(guild_id, SECTION, mutate)
        log.info("Permission group %s deleted for guild %s", key, guild_id)

    async def add_role_to_group(self, guild_id, key, role_id):
        await self._edit_group(
            guild_id, key, lambda group: group.role_ids.add(str(role_id)))

    async def remove_role_from_group(self, guild_id, key, role_id):
        await self._edit_group(
            guild_id, key, lambda group: group.role_ids.discard(str(role_id)))

    async def grant_permission_to_group(self, guild_id, key, node):
        await self._edit_group(
            guild_id, key, lambda group: group.permissions.add(node))

    async def revoke_permission_from_group(self, guild_id, key, node):
        await self._edit_group(
            guild_id, key, lambda group: group.permissions.discard(node))

    async def set_group_inheritance(self, guild_id, key, parent_keys):
        """Replace the group's parents with parent_keys."""
        parents = list(dict.fromkeys(parent_keys))

        def mutate(groups):
            if key not in groups:
                raise GroupNotFound(key)
            if key in parents:
                raise SelfInheritance(key)
            missing = [parent for parent in parents if parent not in groups]
            if missing:
                raise UnknownParent(key, missing)
            for parent in parents:
                if reaches(groups, parent, key):
                    raise InheritanceCycle(key, parent)
            groups[key]["inherits"] = parents
            return groups
        await self.settings.update(guild_id, SECTION, mutate)
        log.info("Permission group %s now inherits %s in guild %s",
                 key, parents, guild_id)

"""Per-guild settings, persisted to one json document.

{
    "<guild id>": {
        "logChannelId": "...",
        "permissionGroups": {...}
    }
}

Cogs which own a section of the settings register it:

    settings.register("permissionGroups", self.validate, self.on_updated)

validate is called with the new section value and *must raise on failure*.
on_updated is called with (guild_id, value) once the new value is on disk.
Unregister on cog unload.

All edits go through update(), which serializes edits per guild, saves the
full document, and only then swaps the new data in. A failed save leaves the
in-memory settings as they were.
"""
import asyncio
import collections
import copy
from dataclasses import dataclass
import logging
import typing

from mochi.core import dcog, Cog
from mochi.store import JsonFileStore

log = logging.getLogger(__name__)


class InvalidSettings(Exception):
    pass


@dataclass
class SettingsRegEntry:
    # Called pre-update, to validate. *must raise on failure*
    validate: typing.Callable[[typing.Any], None]
    # Called *after* the update was saved
    on_updated: typing.Callable[[str, typing.Any], None]


@dcog()
class GuildSettings(Cog):
    """Registry and storage for per-guild settings."""

    def __init__(self, config, store=None):
        self.filename = config.register("filename", default="guild_settings.json")
        self.backup_dir = config.register("backup_dir", default="backups")
        self.backup_prefix = config.register(
            "backup_prefix", default="guild-settings-backup")

        self._store = store or JsonFileStore(
            self.filename(), self.backup_dir(), self.backup_prefix())
        self._registry: typing.Dict[str, SettingsRegEntry] = {}
        self._guilds = {}
        self._guild_locks = collections.defaultdict(asyncio.Lock)
        self._commit_lock = asyncio.Lock()

    async def cog_load(self):
        log.info("Loading guild settings from %s", self._store.filename)
        self._guilds = await self._store.load()
        log.info("Loaded settings for %d guilds", len(self._guilds))

    def register(self, section, validate, on_updated):
        """Register a settings section."""
        self._registry[section] = SettingsRegEntry(validate, on_updated)

    def unregister(self, section):
        """Unregister a settings section."""
        del self._registry[section]

    def guild_ids(self):
        return list(self._guilds)

    async def get(self, guild_id):
        """Copy of the guild's settings, None if it has none."""
        settings = self._guilds.get(str(guild_id))
        if settings is None:
            return None
        return copy.deepcopy(settings)

    async def get_section(self, guild_id, section, default=None):
        try:
            return copy.deepcopy(self._guilds[str(guild_id)][section])
        except KeyError:
            return default

    def _validate(self, section, value):
        try:
            entry = self._registry[section]
        except KeyError:
            return None
        entry.validate(value)
        return entry

    async def _commit(self, guild_id, settings):
        """Persist the full document with settings for guild_id swapped in."""
        async with self._commit_lock:
            data = dict(self._guilds)
            data[guild_id] = settings
            await self._store.save(data)
            self._guilds = data

    async def update(self, guild_id, section, mutate):
        """Read-modify-write a single section of a guild's settings.

        mutate receives a copy of the current section value ({} if unset)
        and returns the new value. Anything it raises propagates and nothing
        is saved.
        """
        guild_id = str(guild_id)
        async with self._guild_locks[guild_id]:
            settings = copy.deepcopy(self._guilds.get(guild_id, {}))
            value = mutate(settings.get(section, {}))
            entry = self._validate(section, value)
            settings[section] = value
            await self._commit(guild_id, settings)

        log.debug("Updated %s for guild %s", section, guild_id)
        if entry:
            entry.on_updated(guild_id, copy.deepcopy(value))
        return copy.deepcopy(value)

    async def set_settings(self, guild_id, **values):
        """Merge top-level settings for a guild."""
        guild_id = str(guild_id)
        async with self._guild_locks[guild_id]:
            settings = copy.deepcopy(self._guilds.get(guild_id, {}))
            entries = {
                section: self._validate(section, value)
                for section, value in values.items()
            }
            settings.update(copy.deepcopy(values))
            await self._commit(guild_id, settings)

        for section, entry in entries.items():
            if entry:
                entry.on_updated(guild_id, copy.deepcopy(values[section]))
        return copy.deepcopy(settings)

    async def backup(self, name=None):
        return await self._store.backup(name)

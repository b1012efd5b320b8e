import collections
import datetime
import importlib
import inspect
import logging
import sys
import types

import discord
from discord.ext import commands
from discord.ext.commands import Cog

from . import config
from . import utils

log = logging.getLogger(__name__)

PLUGIN_DESC = "__mochi_plugin_desc__"
COG_DESC = "__mochi_cog_desc__"

DEFAULT_PLUGINS = [
    "mochi.plugins.guildsettings",
    "mochi.plugins.permissions",
    "mochi.plugins.command_errors",
]


def dcog(depends=None, pass_bot=False):
    def real_decorator(cls):
        setattr(cls, PLUGIN_DESC, PluginDesc(
            depends=depends or [],
            pass_bot=pass_bot
        ))
        return cls
    return real_decorator


def _is_submodule(parent, child):
    return parent == child or child.startswith(parent + ".")


def force_unload(name):
    for module in list(sys.modules.keys()):
        if _is_submodule(name, module):
            del sys.modules[module]


PluginDesc = collections.namedtuple("PluginDesc", "depends pass_bot")
CogDesc = collections.namedtuple("CogDesc", "load_time")


class MochiBotBase(commands.bot.BotBase):
    """Bot which constructs dcogs once their dependencies are loaded.

    A dcog's constructor receives its config group followed by the cog
    instances named in depends, in order. Cogs whose dependencies are
    missing are parked until they show up.
    """

    def __init__(self, *args, conf="config.yml", **kwargs):
        self._config = config.FileConfiguration(conf)
        self._config.load()
        cgroup = self._config.root
        try:
            self.prefix = cgroup.register("prefix", default="!")
            self.token = cgroup.register("token")
            self.plugins = cgroup.register("plugins", default=DEFAULT_PLUGINS)
        finally:
            # Raise and fail to start on invalid core config
            self._config.save()

        self._mochi_unloaded_cogs = {}
        self._mochi_extensions = {}
        kwargs.setdefault("intents", default_intents())
        super().__init__(self.prefix.value, *args, **kwargs)

    @property
    def extensions(self):
        return types.MappingProxyType(self._mochi_extensions)

    async def setup_hook(self):
        plugins = self.plugins()
        if isinstance(plugins, str):
            plugins = [plugins]
        for plugin in plugins:
            await self.load_extension(plugin)

    async def start(self, *args, **kwargs):
        await super().start(self.token.value, *args, **kwargs)

    async def on_error(self, event, *args, **kwargs):
        log.exception(
            "Unhandled exception in %s\nargs: %s\nkwargs: %s\n",
            event, args, kwargs)

    async def add_cog(self, cls, **kwargs):
        """Tries to load a cog.

        If not all dependencies are loaded, will defer until they are.
        """
        desc = getattr(cls, PLUGIN_DESC, None)
        if not desc:
            log.debug("Loading cog %s", cls)
            return await super().add_cog(cls, **kwargs)

        depends = [self.get_cog(name) for name in desc.depends]
        if not all(depends):
            log.debug("Deferring %s until %s are loaded", cls.__name__, desc.depends)
            self._mochi_unloaded_cogs[cls.__name__] = cls
            return

        self._config.load()
        cgroup = self._config.root.add_group(utils.snakify(cls.__name__))

        depends.insert(0, cgroup)
        if desc.pass_bot:
            depends.insert(0, self)

        try:
            cog = cls(*depends)
        finally:
            self._config.save()
        await super().add_cog(cog, **kwargs)
        setattr(cog, COG_DESC, CogDesc(datetime.datetime.now(datetime.timezone.utc)))
        log.debug("Loaded dcog %s.%s", cls.__module__, cls.__name__)

        # Try loading previously unloaded plugins.
        unloaded_plugins = self._mochi_unloaded_cogs
        self._mochi_unloaded_cogs = {}
        for plugin in unloaded_plugins.values():
            await self.add_cog(plugin)

    async def remove_cog(self, name, remove=True, **kwargs):
        """Unloads a cog.

        Name of a cog must be it's class name.
        If another cog depends on this one, unload but do not remove it.
        """
        cog = self.cogs.get(name, None)

        if remove:
            self._mochi_unloaded_cogs.pop(name, None)
        elif cog:
            self._mochi_unloaded_cogs[name] = type(cog)

        if not cog:
            return

        if hasattr(cog, PLUGIN_DESC):
            await self.unload_cog_deps(cog)
            self._config.root.remove_group(utils.snakify(name))
        removed = await super().remove_cog(name, **kwargs)
        log.debug("Unloaded dcog %s", name)
        return removed

    async def unload_cog_deps(self, unloading_cog):
        for cog_name, cog_inst in self.cogs.copy().items():
            desc = getattr(cog_inst, PLUGIN_DESC, None)
            if not desc:
                continue

            if type(unloading_cog).__name__ in desc.depends:
                await self.remove_cog(cog_name, remove=False)

    async def load_extension(self, name, *, package=None):
        """Load a module, adding every dcog defined in it."""
        if name in self._mochi_extensions:
            return

        log.info("Loading extension %s", name)
        # Just in case we previously failed to unload this module, force unload it
        force_unload(name)
        lib = importlib.import_module(name)

        for _, val in inspect.getmembers(lib, inspect.isclass):
            if hasattr(val, PLUGIN_DESC):
                await self.add_cog(val)

        setup = getattr(lib, 'setup', None)
        if setup:
            await discord.utils.maybe_coroutine(setup, self)

        self._mochi_extensions[name] = lib

    async def unload_extension(self, name, *, package=None):
        """Unload a module, and every cog which came from it."""
        if name not in self._mochi_extensions:
            raise commands.ExtensionNotLoaded(name)

        for cog_name, cls in list(self._mochi_unloaded_cogs.items()):
            if _is_submodule(name, cls.__module__):
                del self._mochi_unloaded_cogs[cog_name]

        for cog_name, cog in self.cogs.copy().items():
            if _is_submodule(name, type(cog).__module__):
                await self.remove_cog(cog_name)

        del self._mochi_extensions[name]
        force_unload(name)
        log.info("Unloaded extension %s", name)

    async def close(self):
        for name in list(self._mochi_extensions):
            await self.unload_extension(name)
        return await super().close()


def default_intents():
    # Role sets come from member objects, which need the members intent.
    intents = discord.Intents.default()
    intents.members = True
    return intents


class MochiAutoShardedBot(MochiBotBase, discord.AutoShardedClient):
    pass


class MochiBot(MochiBotBase, discord.Client):
    pass

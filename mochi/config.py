"""Bot configuration, backed by a single yaml file.

Each dcog gets its own group, named after the snakified class name:

    token: ...
    prefix: "!"
    guild_settings:
      filename: guild_settings.json
    permission_resolver:
      cache_ttl: 300

Cogs register their entries in __init__ and keep the returned ConfigEntry:

    def __init__(self, config):
        self.cache_ttl = config.register("cache_ttl", default=300)

Values missing from the file are filled in on save, commented with
"Default value" or "Required value" so the operator can find them.
"""
import io
import logging
import os

import ruamel.yaml

log = logging.getLogger(__name__)


class InvalidConfig(Exception):
    pass


class ConfigEntry:
    """Handle for a single config value."""

    def __init__(self, config, default=None, validator=None, path=None):
        self._config = config
        self._path = path
        self.default = default
        self.validator = validator

    @property
    def value(self):
        return self._config.get(self._path)

    def __call__(self):
        return self.value

    def is_valid(self):
        value = self.value
        if value is None:
            return False
        if self.validator is None:
            return True
        try:
            return bool(self.validator(value))
        except (TypeError, ValueError):
            log.exception("Config value %s failed validation",
                          ".".join(self._path))
            return False


class ConfigGroup:
    def __init__(self, config, path=None):
        self._config = config
        self._path = path or []
        self._entries = {}

    def register(self, value_name, default=None, validator=None):
        """Register config entry.

        Raises if loaded configuration is invalid.
        """
        entry = ConfigEntry(
            self._config, default, validator, path=self._path + [value_name])
        self._entries[value_name] = entry
        if not self.validate():
            raise InvalidConfig(".".join(entry._path))
        return entry

    def add_group(self, group_name):
        group = ConfigGroup(self._config, self._path + [group_name])
        self._entries[group_name] = group
        self.validate()
        return group

    def remove_group(self, group_name):
        del self._entries[group_name]
        self.validate()

    def validate(self):
        """Fill in defaults and report whether every entry is usable.

        If we changed configuration data, comment where we changed it.
        """
        data = self._config.get(self._path)
        valid = True

        for key, entry in self._entries.items():
            if key not in data or data[key] is None:
                if isinstance(entry, ConfigGroup):
                    data[key] = self._config._yaml.map()
                    continue
                if entry.default is not None:
                    data[key] = entry.default
                    data.yaml_add_eol_comment("Default value", key)
                else:
                    data[key] = None
                    data.yaml_add_eol_comment("Required value", key)
                    valid = False
                    continue
            if isinstance(entry, ConfigEntry) and not entry.is_valid():
                valid = False
        return valid


class Configuration:
    def __init__(self):
        self._yaml = ruamel.yaml.YAML()
        self.root = ConfigGroup(self)

    def get(self, path):
        cur = self._data
        for crumb in path:
            cur = cur[crumb]
        return cur

    def _pruned(self):
        """Copy of the data without empty groups."""
        data = self._data.copy()
        for key, val in self._data.items():
            if isinstance(val, dict) and not val:
                del data[key]
        return data

    def dumps(self):
        buff = io.StringIO()
        self._yaml.dump(self._pruned(), buff)
        return buff.getvalue()


class StringConfiguration(Configuration):
    def __init__(self, string):
        super().__init__()
        self._data = self._yaml.load(string) or self._yaml.map()


class FileConfiguration(Configuration):
    def __init__(self, filename):
        super().__init__()
        self._filename = filename
        self._data = self._yaml.map()

    def load(self):
        try:
            with open(self._filename, encoding="utf8") as f:
                self._data = self._yaml.load(f.read()) or self._yaml.map()
        except FileNotFoundError:
            log.info("No config at %s, starting empty", self._filename)
            self._data = self._yaml.map()

    def save(self):
        tmp_filename = self._filename + ".tmp"
        try:
            with open(tmp_filename, 'w', encoding="utf8") as f:
                self._yaml.dump(self._pruned(), f)
            os.replace(tmp_filename, self._filename)
        except OSError:
            log.exception("Failed to save config %s", self._filename)
            try:
                os.remove(tmp_filename)
            except FileNotFoundError:
                pass
            raise

"""Crash-safe persistence of a string-keyed map to one json file.

Writes go to a temporary file which then replaces the target, so the file on
disk is either the old or the new document, never half of one. There is no
locking across processes; one writer per file.
"""
import datetime
import json
import logging
import os
import shutil

from . import utils

log = logging.getLogger(__name__)


def backup_timestamp(now=None):
    """ISO8601 UTC timestamp that is safe to use in a filename."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return stamp.replace(":", "-").replace(".", "-")


class JsonFileStore:

    def __init__(self, filename, backup_dir="backups", backup_prefix="config-backup"):
        self.filename = os.path.abspath(filename)
        self.backup_dir = os.path.abspath(backup_dir)
        self.backup_prefix = backup_prefix

    @property
    def tmp_filename(self):
        return self.filename + ".tmp"

    def _load(self):
        try:
            with open(self.filename, encoding="utf8") as f:
                data = json.load(f)
        except FileNotFoundError:
            log.info("No data file at %s, using empty default", self.filename)
            return {}
        except (OSError, ValueError):
            log.exception("Failed to load or parse %s", self.filename)
            self._preserve_corrupt()
            return {}

        if not isinstance(data, dict):
            log.error("Expected a json object in %s, got %s",
                      self.filename, type(data).__name__)
            self._preserve_corrupt()
            return {}
        return data

    def _preserve_corrupt(self):
        """Keep the unreadable file around, the next save would replace it."""
        name = "%s-corrupt-%s.json" % (self.backup_prefix, backup_timestamp())
        try:
            path = self._backup(name)
        except OSError:
            log.exception("Could not preserve unreadable %s", self.filename)
        else:
            log.error("Unreadable %s copied to %s, starting from an empty "
                      "data set until it is restored", self.filename, path)

    def _save(self, data):
        try:
            with open(self.tmp_filename, "w", encoding="utf8") as f:
                json.dump(data, f, indent=4, ensure_ascii=False)
            os.replace(self.tmp_filename, self.filename)
        except Exception:
            log.exception("Failed to safely save %s", self.filename)
            try:
                os.remove(self.tmp_filename)
            except FileNotFoundError:
                pass
            except OSError:
                log.exception("Failed to clean up %s", self.tmp_filename)
            raise

    def _backup(self, name=None):
        name = name or "%s-%s.json" % (self.backup_prefix, backup_timestamp())
        if not os.path.exists(self.filename):
            log.warning("Cannot back up %s, it does not exist yet", self.filename)
            raise FileNotFoundError(self.filename)
        os.makedirs(self.backup_dir, exist_ok=True)
        path = os.path.join(self.backup_dir, name)
        shutil.copyfile(self.filename, path)
        log.info("Backed up %s to %s", self.filename, path)
        return path

    async def load(self):
        """Return the persisted map, or {} if there is none."""
        return await utils.run_blocking(self._load)

    async def save(self, data):
        """Atomically replace the file with data. Raises on failure."""
        await utils.run_blocking(self._save, data)

    async def backup(self, name=None):
        """Copy the current file into the backup directory, return its path."""
        return await utils.run_blocking(self._backup, name)

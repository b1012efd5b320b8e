import os
import shutil
import tempfile
import unittest

from mochi import config
from mochi.store import JsonFileStore
from mochi.plugins.guildsettings import GuildSettings, InvalidSettings
from mochi.plugins.permissions import groups
from mochi.plugins.permissions.groups import PermissionGroup, PermissionGroups

from common import async_test, setup_logging

GUILD = "1000"


class PermissionGroupsTest(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        setup_logging()

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.filename = os.path.join(self.tmpdir, "settings.json")
        self.mutations = []

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    async def make_groups(self):
        conf = config.StringConfiguration("")
        self.settings = GuildSettings(
            conf.root.add_group("guild_settings"),
            store=JsonFileStore(self.filename, os.path.join(self.tmpdir, "backups")))
        await self.settings.cog_load()
        repo = PermissionGroups(conf.root.add_group("permission_groups"), self.settings)
        repo.subscribe(self.mutations.append)
        return repo

    @async_test
    async def test_create(self):
        repo = await self.make_groups()

        await repo.create_group(GUILD, "mods", "Moderators")

        group = await repo.get_group(GUILD, "mods")
        self.assertEqual("Moderators", group.name)
        self.assertEqual(set(), group.role_ids)
        self.assertEqual(set(), group.permissions)
        self.assertEqual([], group.inherits)
        self.assertEqual([GUILD], self.mutations)

    @async_test
    async def test_create_duplicate(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")

        with self.assertRaises(groups.GroupExists):
            await repo.create_group(GUILD, "mods", "Other moderators")

        self.assertEqual("Moderators", (await repo.get_group(GUILD, "mods")).name)
        self.assertEqual([GUILD], self.mutations)

    @async_test
    async def test_get_absent(self):
        repo = await self.make_groups()

        self.assertIsNone(await repo.get_group(GUILD, "mods"))
        self.assertIsNone(await repo.get_all_groups(GUILD))

    @async_test
    async def test_guilds_are_separate(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")
        await repo.create_group("2000", "mods", "Elsewhere")

        self.assertEqual("Moderators", (await repo.get_group(GUILD, "mods")).name)
        self.assertEqual("Elsewhere", (await repo.get_group("2000", "mods")).name)

    @async_test
    async def test_delete(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")

        await repo.delete_group(GUILD, "mods")

        self.assertIsNone(await repo.get_group(GUILD, "mods"))
        self.assertEqual({}, await repo.get_all_groups(GUILD))

    @async_test
    async def test_delete_missing(self):
        repo = await self.make_groups()

        with self.assertRaises(groups.GroupNotFound):
            await repo.delete_group(GUILD, "mods")

    @async_test
    async def test_delete_referenced(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")
        await repo.create_group(GUILD, "admins", "Admins")
        await repo.set_group_inheritance(GUILD, "admins", ["mods"])

        with self.assertRaises(groups.GroupReferenced) as cm:
            await repo.delete_group(GUILD, "mods")

        self.assertEqual(["admins"], cm.exception.referrers)
        self.assertIsNotNone(await repo.get_group(GUILD, "mods"))

        await repo.set_group_inheritance(GUILD, "admins", [])
        await repo.delete_group(GUILD, "mods")
        self.assertIsNone(await repo.get_group(GUILD, "mods"))

    @async_test
    async def test_roles_idempotent(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")

        await repo.add_role_to_group(GUILD, "mods", "1")
        await repo.add_role_to_group(GUILD, "mods", "1")
        await repo.add_role_to_group(GUILD, "mods", 2)

        self.assertEqual({"1", "2"}, (await repo.get_group(GUILD, "mods")).role_ids)

        await repo.remove_role_from_group(GUILD, "mods", "1")
        await repo.remove_role_from_group(GUILD, "mods", "1")

        self.assertEqual({"2"}, (await repo.get_group(GUILD, "mods")).role_ids)

    @async_test
    async def test_grant_idempotent(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")

        await repo.grant_permission_to_group(GUILD, "mods", "ticket.close")
        await repo.grant_permission_to_group(GUILD, "mods", "ticket.close")

        self.assertEqual({"ticket.close"}, (await repo.get_group(GUILD, "mods")).permissions)

        await repo.revoke_permission_from_group(GUILD, "mods", "ticket.close")
        await repo.revoke_permission_from_group(GUILD, "mods", "ticket.close")

        self.assertEqual(set(), (await repo.get_group(GUILD, "mods")).permissions)

    @async_test
    async def test_edit_missing_group(self):
        repo = await self.make_groups()

        with self.assertRaises(groups.GroupNotFound):
            await repo.add_role_to_group(GUILD, "mods", "1")
        with self.assertRaises(groups.GroupNotFound):
            await repo.remove_role_from_group(GUILD, "mods", "1")
        with self.assertRaises(groups.GroupNotFound):
            await repo.grant_permission_to_group(GUILD, "mods", "ticket.close")
        with self.assertRaises(groups.GroupNotFound):
            await repo.revoke_permission_from_group(GUILD, "mods", "ticket.close")
        with self.assertRaises(groups.GroupNotFound):
            await repo.set_group_inheritance(GUILD, "mods", [])
        self.assertEqual([], self.mutations)

    @async_test
    async def test_inheritance(self):
        repo = await self.make_groups()
        for key in ("a", "b", "c"):
            await repo.create_group(GUILD, key, key.upper())

        await repo.set_group_inheritance(GUILD, "a", ["b", "c", "b"])
        self.assertEqual(["b", "c"], (await repo.get_group(GUILD, "a")).inherits)

        await repo.set_group_inheritance(GUILD, "a", ["c"])
        self.assertEqual(["c"], (await repo.get_group(GUILD, "a")).inherits)

    @async_test
    async def test_self_inheritance(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "a", "A")

        with self.assertRaises(groups.SelfInheritance):
            await repo.set_group_inheritance(GUILD, "a", ["a"])

    @async_test
    async def test_unknown_parent(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "a", "A")
        await repo.create_group(GUILD, "b", "B")

        with self.assertRaises(groups.UnknownParent) as cm:
            await repo.set_group_inheritance(GUILD, "a", ["b", "ghost"])

        self.assertEqual(["ghost"], cm.exception.missing)
        self.assertEqual([], (await repo.get_group(GUILD, "a")).inherits)

    @async_test
    async def test_transitive_cycle_rejected(self):
        repo = await self.make_groups()
        for key in ("a", "b", "c"):
            await repo.create_group(GUILD, key, key.upper())
        await repo.set_group_inheritance(GUILD, "a", ["b"])
        await repo.set_group_inheritance(GUILD, "b", ["c"])

        with self.assertRaises(groups.InheritanceCycle) as cm:
            await repo.set_group_inheritance(GUILD, "c", ["a"])

        self.assertEqual("a", cm.exception.parent)
        self.assertEqual([], (await repo.get_group(GUILD, "c")).inherits)

    @async_test
    async def test_diamond_allowed(self):
        repo = await self.make_groups()
        for key in ("top", "left", "right", "base"):
            await repo.create_group(GUILD, key, key)
        await repo.set_group_inheritance(GUILD, "left", ["base"])
        await repo.set_group_inheritance(GUILD, "right", ["base"])

        await repo.set_group_inheritance(GUILD, "top", ["left", "right"])

        self.assertEqual(["left", "right"], (await repo.get_group(GUILD, "top")).inherits)

    @async_test
    async def test_persisted_format(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")
        await repo.add_role_to_group(GUILD, "mods", "2")
        await repo.add_role_to_group(GUILD, "mods", "1")
        await repo.grant_permission_to_group(GUILD, "mods", "ticket.*")
        await self.settings.set_settings(GUILD, logChannelId="42")

        data = await JsonFileStore(self.filename).load()

        self.assertEqual({
            "logChannelId": "42",
            "permissionGroups": {
                "mods": {
                    "name": "Moderators",
                    "roleIds": ["1", "2"],
                    "permissions": ["ticket.*"],
                    "inherits": [],
                }
            }
        }, data[GUILD])

    @async_test
    async def test_search(self):
        repo = await self.make_groups()
        await repo.create_group(GUILD, "mods", "Moderators")
        await repo.create_group(GUILD, "modmail", "Modmail")
        await repo.create_group(GUILD, "admins", "Admins")

        self.assertEqual(
            [("Moderators (mods)", "mods"), ("Modmail (modmail)", "modmail")],
            await repo.search_groups(GUILD, "MOD"))
        self.assertEqual(1, len(await repo.search_groups(GUILD, "", limit=1)))
        self.assertEqual([], await repo.search_groups("2000", "mod"))

    @async_test
    async def test_unsubscribe(self):
        repo = await self.make_groups()
        repo.unsubscribe(self.mutations.append)

        await repo.create_group(GUILD, "mods", "Moderators")

        self.assertEqual([], self.mutations)

    @async_test
    async def test_invalid_section_rejected(self):
        await self.make_groups()

        with self.assertRaises(InvalidSettings):
            await self.settings.set_settings(
                GUILD, permissionGroups={"mods": {"roleIds": ["1"]}})

    @async_test
    async def test_settings_cannot_break_inheritance(self):
        repo = await self.make_groups()
        bad_sections = [
            {"a": {"name": "A", "inherits": ["a"]}},
            {"a": {"name": "A", "inherits": ["ghost"]}},
            {
                "a": {"name": "A", "inherits": ["b"]},
                "b": {"name": "B", "inherits": ["c"]},
                "c": {"name": "C", "inherits": ["a"]},
            },
        ]

        for section in bad_sections:
            with self.assertRaises(InvalidSettings):
                await self.settings.set_settings(GUILD, permissionGroups=section)
            with self.assertRaises(InvalidSettings):
                await self.settings.update(
                    GUILD, groups.SECTION, lambda current, section=section: section)

        self.assertIsNone(await repo.get_all_groups(GUILD))
        self.assertEqual([], self.mutations)

    @async_test
    async def test_settings_accept_diamond(self):
        repo = await self.make_groups()

        await self.settings.set_settings(GUILD, permissionGroups={
            "top": {"name": "Top", "inherits": ["left", "right"]},
            "left": {"name": "Left", "inherits": ["base"]},
            "right": {"name": "Right", "inherits": ["base"]},
            "base": {"name": "Base"},
        })

        self.assertEqual(["left", "right"], (await repo.get_group(GUILD, "top")).inherits)

    @async_test
    async def test_failing_subscriber(self):
        repo = await self.make_groups()

        def broken(guild_id):
            raise RuntimeError("boom")

        repo.unsubscribe(self.mutations.append)
        repo.subscribe(broken)
        repo.subscribe(self.mutations.append)

        with self.assertLogs("mochi.plugins.permissions.groups", level="ERROR"):
            await repo.create_group(GUILD, "mods", "Moderators")

        self.assertEqual("Moderators", (await repo.get_group(GUILD, "mods")).name)
        self.assertEqual([GUILD], self.mutations)


class PermissionGroupTest(unittest.TestCase):

    def test_from_json_defaults(self):
        group = PermissionGroup.from_json({"name": "Mods"})

        self.assertEqual(PermissionGroup(name="Mods"), group)

    def test_reaches(self):
        data = {
            "a": {"inherits": ["b"]},
            "b": {"inherits": ["c"]},
            "c": {"inherits": []},
        }

        self.assertTrue(groups.reaches(data, "a", "c"))
        self.assertFalse(groups.reaches(data, "c", "a"))
        self.assertTrue(groups.reaches(data, "a", "a"))


if __name__ == "__main__":
    unittest.main()

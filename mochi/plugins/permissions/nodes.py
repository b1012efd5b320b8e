"""Permission nodes known to the bot.

Nodes are "module.action" strings. Granting "module.*" grants every node
whose first segment is module, and "*" grants everything. The catalog is
only used for input validation and autocomplete; resolution works on any
string.
"""

ALL = "*"

TICKET_CREATE = "ticket.create"
TICKET_CLOSE = "ticket.close"
TICKET_ADD_USER = "ticket.add_user"
TICKET_REMOVE_USER = "ticket.remove_user"
TICKET_DELETE = "ticket.delete"

CONFIG_VIEW = "config.view"
CONFIG_SET = "config.set"

PERMISSIONS_VIEW = "permissions.view"
PERMISSIONS_GROUP_CREATE = "permissions.group.create"
PERMISSIONS_GROUP_DELETE = "permissions.group.delete"
PERMISSIONS_GROUP_ASSIGN_ROLE = "permissions.group.assign_role"
PERMISSIONS_GROUP_GRANT = "permissions.group.grant"
PERMISSIONS_GROUP_SET_INHERITANCE = "permissions.group.set_inheritance"

MODERATION_KICK = "moderation.kick"
MODERATION_BAN = "moderation.ban"
MODERATION_TIMEOUT = "moderation.timeout"
MODERATION_WARN = "moderation.warn"
MODERATION_HISTORY = "moderation.history"

ROLES_MANAGE_ADD = "roles.manage.add"
ROLES_MANAGE_REMOVE = "roles.manage.remove"
ROLES_MANAGE_AUTOROLE = "roles.manage.autorole"
ROLES_MANAGE_REACTION = "roles.manage.reaction"

XP_VIEW = "xp.view"
XP_MODIFY = "xp.modify"
XP_RESET = "xp.reset"
XP_LEADERBOARD = "xp.leaderboard"
XP_CONFIGURE = "xp.configure"
XP_IMPORT_EXPORT = "xp.import_export"

CHANNELS_CREATE = "channels.create"
CHANNELS_DELETE = "channels.delete"
CHANNELS_MODIFY = "channels.modify"
CHANNELS_TEMPORARY = "channels.temporary"
CHANNELS_CLONE = "channels.clone"

STATS_VIEW = "stats.view"
STATS_EXPORT = "stats.export"
STATS_RESET = "stats.reset"

REPORTS_HANDLE = "reports.handle"
REPORTS_VIEW_ALL = "reports.view_all"
REPORTS_CLOSE = "reports.close"

CATALOG = tuple(
    value for name, value in sorted(globals().items())
    if name.isupper() and isinstance(value, str)
)

MODULES = frozenset(node.split(".")[0] for node in CATALOG if node != ALL)


def module_wildcard(node):
    """Module wildcard covering node, e.g. ticket.close -> ticket.*"""
    return node.split(".")[0] + ".*"


def grants(granted, node):
    """Whether the set of granted nodes covers node."""
    return (
        ALL in granted
        or node in granted
        or module_wildcard(node) in granted
    )


def is_known(node):
    if node in CATALOG:
        return True
    return node.endswith(".*") and node[:-2] in MODULES


def search(query, limit=25):
    """Catalog nodes containing query, for autocomplete."""
    query = query.lower()
    return [node for node in CATALOG if query in node.lower()][:limit]

"""Role based permission groups.

Loading this extension adds the PermissionGroups and PermissionResolver
cogs, which need GuildSettings.
"""
from .groups import (
    GroupError, GroupExists, GroupNotFound, GroupReferenced, InheritanceCycle,
    PermissionGroup, PermissionGroups, SelfInheritance, UnknownParent,
)
from .resolver import Member, PermissionCache, PermissionResolver
from .gate import PermissionDenied, require

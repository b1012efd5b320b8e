"""Command checks backed by PermissionResolver.

@command()
@gate.require(nodes.TICKET_CLOSE, nodes.TICKET_DELETE)  # either one will do
async def close(self, ctx):
    ...

@command()
@gate.require(nodes.CONFIG_VIEW, nodes.CONFIG_SET, require_all=True)
async def config(self, ctx):
    ...
"""
import logging

from discord.ext import commands
from discord.ext.commands import errors

from .resolver import Member

log = logging.getLogger(__name__)

RESOLVER_COG = "PermissionResolver"


class PermissionDenied(errors.CheckFailure):
    def __init__(self, nodes, require_all):
        self.nodes = list(nodes)
        self.require_all = require_all
        joined = ", ".join(self.nodes)
        if require_all:
            message = f"You need all of these permissions: {joined}"
        else:
            message = f"You need one of these permissions: {joined}"
        super().__init__(message)


async def check_all(resolver, member, nodes):
    """Whether member holds every node. Vacuously true."""
    for node in nodes:
        if not await resolver.check(member, node):
            log.debug("Member %s lacks required %s", member.member_id, node)
            return False
    return True


async def check_any(resolver, member, nodes):
    """Whether member holds at least one node. True if there are none."""
    if not nodes:
        return True
    for node in nodes:
        if await resolver.check(member, node):
            log.debug("Member %s has %s", member.member_id, node)
            return True
    return False


async def has_nodes(resolver, member, nodes, require_all=False):
    if require_all:
        return await check_all(resolver, member, nodes)
    return await check_any(resolver, member, nodes)


def require(*nodes, require_all=False):
    """Check that the invoking member holds the nodes."""
    async def predicate(ctx):
        if ctx.guild is None:
            raise errors.NoPrivateMessage()
        resolver = ctx.bot.get_cog(RESOLVER_COG)
        if resolver is None:
            raise errors.CheckFailure(
                f"This command requires the {RESOLVER_COG} cog to be loaded")

        member = Member.from_discord(ctx.author)
        if await has_nodes(resolver, member, nodes, require_all=require_all):
            return True
        log.warning("Denied %s to %s (ID: %s) in guild %s, required %s of %s",
                    ctx.command and ctx.command.qualified_name, ctx.author,
                    member.member_id, member.guild_id,
                    "all" if require_all else "any", list(nodes))
        raise PermissionDenied(nodes, require_all)

    return commands.check(predicate)

import logging
import traceback

import discord
from discord.ext.commands import errors

from mochi.core import dcog, Cog
from mochi.utils import TypeMap
from mochi.plugins.guildsettings import InvalidSettings
from mochi.plugins.permissions.gate import PermissionDenied
from mochi.plugins.permissions.groups import GroupError

log = logging.getLogger(__name__)


def tbtpl(exp):
    return (type(exp), exp, exp.__traceback__)


IGNORED = (
    errors.CommandNotFound,
    errors.DisabledCommand,
)

ERROR_MAP = TypeMap({
    errors.ConversionError: None,  # Probably a programming error...
    errors.BadArgument: "Bad argument: {exp}",
    errors.MissingRequiredArgument:
        "Missing argument: {exp.param.name}. Run `` {ctx.prefix}help "
        "{ctx.command.qualified_name} `` for more info.",
    errors.NoPrivateMessage: "This command only works in guilds.",
    errors.CommandError: "Error running command: {exp}",
    errors.CheckFailure: "Permissions error: {exp}",
    discord.errors.Forbidden: "I don't have permission: {exp.text}",
    PermissionDenied:
        "You can't use `` {ctx.prefix}{ctx.command.qualified_name} ``. {exp}",
    GroupError: "{exp}",
    InvalidSettings: "Invalid settings: {exp}",
})


@dcog()
class CommandErrors(Cog):
    """Central cog for generic error messages.

    Permission group errors raised by commands end up here too, so commands
    can let them propagate instead of formatting them at each call site.
    """

    def __init__(self, config):
        self.verbose_errors = config.register("verbose_errors", False)

    @Cog.listener()
    async def on_command_error(self, ctx, exp):
        try:
            main_exp = exp

            if isinstance(exp, IGNORED):
                return

            if isinstance(exp, errors.CommandInvokeError):
                exp = exp.original

            if isinstance(exp, errors.CheckFailure):
                log.debug("Check failure debugging for '%s' in '%s'", ctx.command.qualified_name,
                          ctx.message.content, exc_info=tbtpl(main_exp))

            msg = ERROR_MAP.lookup(type(exp))
            if msg:
                await ctx.send(msg.format(exp=exp, ctx=ctx))
                return

            if isinstance(exp, discord.errors.HTTPException) and exp.status in range(500, 600):
                msg = "Discord broke, try again."
            elif self.verbose_errors.value:
                msg = "```{}```".format(
                    "".join(traceback.format_exception(*tbtpl(main_exp)))
                    .replace("```", "``\u200b`"))
            else:
                msg = "An unknown error occured."

            log.error("Unhandled error dispatching '%s' in '%s'", ctx.command.qualified_name,
                      ctx.message.content, exc_info=tbtpl(main_exp))
            await ctx.send(msg)
        except Exception:
            log.exception("Unhandled error in on_command_error")
            await ctx.send("An unknown error occured while trying to report an error.")

import asyncio
import functools
import logging
import sys
import types


def setup_logging():
    if hasattr(setup_logging, 'once'):
        return
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "[%(asctime)s][%(name)s][%(levelname)s] %(message)s")

    stdouthandler = logging.StreamHandler(sys.stdout)
    stdouthandler.setFormatter(formatter)
    root.addHandler(stdouthandler)
    setattr(setup_logging, 'once', None)


def async_test(f):
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def discord_member(guild_id, member_id, role_ids=(), administrator=False):
    """Stand-in for discord.Member, with just what authorization reads."""
    return types.SimpleNamespace(
        id=member_id,
        guild=types.SimpleNamespace(id=guild_id),
        roles=[types.SimpleNamespace(id=role_id) for role_id in role_ids],
        guild_permissions=types.SimpleNamespace(administrator=administrator),
    )

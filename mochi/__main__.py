"""Main bot file."""
import asyncio
import logging
import sys

from .core import MochiAutoShardedBot


def setup_logging():
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    mochi = logging.getLogger("mochi")
    mochi.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "[%(asctime)s][%(name)s][%(levelname)s] %(message)s")

    stdouthandler = logging.StreamHandler(sys.stdout)
    stdouthandler.setLevel(logging.DEBUG)
    stdouthandler.setFormatter(formatter)
    root.addHandler(stdouthandler)


async def real_main(conf="config.yml"):
    setup_logging()
    bot = MochiAutoShardedBot(conf=conf)
    async with bot:
        await bot.start()


def main():
    conf = sys.argv[1] if len(sys.argv) > 1 else "config.yml"
    asyncio.run(real_main(conf))


if __name__ == "__main__":
    main()

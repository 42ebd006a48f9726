import logging

import discord

from clickerbot.commands import setup_commands
from clickerbot.config.runtime import ensure_app_config_defaults
from clickerbot.config.settings import TOKEN
from clickerbot.db import init_db

logger = logging.getLogger("clickerbot.bot")


class ClickerBot(discord.Client):
    def __init__(self) -> None:
        intents = discord.Intents.default()
        super().__init__(intents=intents)
        self.tree = discord.app_commands.CommandTree(self)
        self._synced = False

    async def setup_hook(self) -> None:
        setup_commands(self.tree)

    async def on_ready(self) -> None:
        if self._synced:
            return

        for guild in self.guilds:
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)

        self._synced = True
        logger.info("logged in as %s; commands synced to %s guild(s)", self.user, len(self.guilds))


def run() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not TOKEN:
        raise SystemExit("No bot token: write it to TOKEN or set DISCORD_BOT_TOKEN.")
    init_db()
    ensure_app_config_defaults()
    bot = ClickerBot()
    bot.run(TOKEN)


if __name__ == "__main__":
    run()

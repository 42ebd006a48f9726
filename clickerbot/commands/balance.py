import asyncio
import logging

from discord import Embed, Interaction, app_commands

from clickerbot.commands.start import APOLOGY_MESSAGE
from clickerbot.core.errors import GameError
from clickerbot.services.money import money_str
from clickerbot.services.players import fetch_player

logger = logging.getLogger("clickerbot.bot")


def setup_balance(tree: app_commands.CommandTree) -> None:
    @tree.command(name="balance", description="Show your clicker balance.")
    async def balance(interaction: Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            player = await asyncio.to_thread(fetch_player, interaction.user.id)
        except GameError as exc:
            await interaction.followup.send(exc.message, ephemeral=True)
            return
        except Exception:
            logger.exception("balance lookup failed for user %s", interaction.user.id)
            await interaction.followup.send(APOLOGY_MESSAGE, ephemeral=True)
            return

        embed = Embed(title="Your balance")
        embed.add_field(name="Coins", value=money_str(player["score"]), inline=False)
        embed.add_field(name="Auto / sec", value=money_str(player["auto_click_rate"]), inline=True)
        embed.add_field(name="Offline / hour", value=money_str(player["offline_rate_per_hour"]), inline=True)
        if player.get("is_banned"):
            embed.set_footer(text="This account is banned.")
        await interaction.followup.send(embed=embed, ephemeral=True)

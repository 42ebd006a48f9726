import asyncio
import logging

import discord
from discord import Embed, Interaction, app_commands
from discord.ui import Button, View

from clickerbot.config import settings
from clickerbot.services.money import money_str
from clickerbot.services.players import sync_profile

logger = logging.getLogger("clickerbot.bot")

APOLOGY_MESSAGE = "Something went wrong on our side. Please try again in a moment."


def profile_from_user(user: discord.abc.User, locale: str = "") -> dict:
    """Profile fields the game keeps for a chat user."""
    avatar = getattr(user, "display_avatar", None)
    return {
        "user_id": str(user.id),
        "username": user.name,
        "first_name": getattr(user, "global_name", None) or user.display_name,
        "last_name": "",
        "language_code": locale,
        "profile_photo_url": avatar.url if avatar is not None else "",
    }


class OpenGameView(View):
    def __init__(self, url: str) -> None:
        super().__init__(timeout=None)
        self.add_item(Button(label="Open Game", style=discord.ButtonStyle.link, url=url))


def build_start_embed(player: dict, display_name: str) -> Embed:
    embed = Embed(
        title="Welcome to the Clicker!",
        description=f"Hello {display_name}! Tap the button below to start clicking.",
    )
    embed.add_field(name="Balance", value=money_str(player["score"]), inline=True)
    embed.add_field(name="Per click", value=money_str(player["click_value"]), inline=True)
    return embed


def setup_start(tree: app_commands.CommandTree) -> None:
    @tree.command(name="start", description="Open the clicker game.")
    async def start(interaction: Interaction) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            player = await asyncio.to_thread(sync_profile, profile_from_user(interaction.user, str(interaction.locale)))
        except Exception:
            logger.exception("profile sync failed for user %s", interaction.user.id)
            await interaction.followup.send(APOLOGY_MESSAGE, ephemeral=True)
            return
        await interaction.followup.send(
            embed=build_start_embed(player, interaction.user.display_name),
            view=OpenGameView(settings.WEB_APP_URL),
            ephemeral=True,
        )

from discord import app_commands

from clickerbot.commands.balance import setup_balance
from clickerbot.commands.start import setup_start


def setup_commands(tree: app_commands.CommandTree) -> None:
    setup_start(tree)
    setup_balance(tree)

import os
from pathlib import Path


_ROOT = Path(__file__).resolve().parents[2]
_TOKEN_PATH = _ROOT / "TOKEN"
TOKEN = (
    _TOKEN_PATH.read_text(encoding="utf-8").strip()
    if _TOKEN_PATH.exists()
    else os.getenv("DISCORD_BOT_TOKEN", "").strip()
)
DB_PATH = Path(os.getenv("CLICKERBOT_DB_PATH", str(_ROOT / "data" / "clickerbot.db")))
ADMIN_SECRET = os.getenv("CLICKERBOT_ADMIN_SECRET", "").strip()
WEB_APP_URL = os.getenv("CLICKERBOT_WEB_APP_URL", "https://example.invalid/clicker").strip()

# APP CONFIGS
MONEY_DECIMALS = 9                          # Fractional digits for every balance, rate, cost and pot
START_SCORE = "0"                           # New players start with an empty balance
START_CLICK_VALUE = "0.000000001"           # Manual click increment before any upgrade
START_AUTO_CLICK_RATE = "0"                 # Passive per-second increment before any upgrade
START_OFFLINE_RATE_PER_HOUR = "0"           # Passive per-hour increment before any upgrade
UPGRADE_COST_MULTIPLIER = "1.215"           # cost = base_cost * multiplier ** level
OFFLINE_MIN_SECONDS = 10                    # Absences this short are not settled (rapid polling)
HOUSE_FEE_PERCENT = "1"                     # Share of every lottery pot kept by the house
MIN_PARTICIPANTS = 2                        # Entries needed before a round gets a deadline
RECENT_WINNERS_LIMIT = 10                   # Payout events kept in the game document
LEADERBOARD_LIMIT = 10                      # Rows returned by the leaderboard
HISTORY_LIMIT = 50                          # Rows returned by the transfer history
SOLO_ROUND_SECONDS = 60                     # Solo lottery window once two players are in
TEAM_ROUND_SECONDS = 180                    # Team lottery window once two teams are in
BETTING_CUTOFF_SECONDS = 5                  # Joins are refused this close to a deadline
TEAM_NAME_MAX_LENGTH = 32

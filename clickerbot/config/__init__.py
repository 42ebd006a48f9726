from clickerbot.config.settings import (
    ADMIN_SECRET,
    BETTING_CUTOFF_SECONDS,
    DB_PATH,
    HOUSE_FEE_PERCENT,
    MIN_PARTICIPANTS,
    SOLO_ROUND_SECONDS,
    TEAM_ROUND_SECONDS,
    TOKEN,
    WEB_APP_URL,
)

__all__ = [
    "ADMIN_SECRET",
    "BETTING_CUTOFF_SECONDS",
    "DB_PATH",
    "HOUSE_FEE_PERCENT",
    "MIN_PARTICIPANTS",
    "SOLO_ROUND_SECONDS",
    "TEAM_ROUND_SECONDS",
    "TOKEN",
    "WEB_APP_URL",
]

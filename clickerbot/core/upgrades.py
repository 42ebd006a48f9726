from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from types import MappingProxyType


class UpgradeKind(str, Enum):
    CLICK = "click"
    AUTO = "auto"
    OFFLINE = "offline"

    @property
    def target_field(self) -> str:
        return _TARGET_FIELDS[self]


_TARGET_FIELDS = {
    UpgradeKind.CLICK: "click_value",
    UpgradeKind.AUTO: "auto_click_rate",
    UpgradeKind.OFFLINE: "offline_rate_per_hour",
}


@dataclass(frozen=True)
class Upgrade:
    id: str
    kind: UpgradeKind
    name: str
    benefit: Decimal
    base_cost: Decimal


def _tier(kind: UpgradeKind, tier: int, name: str, benefit: str, base_cost: str) -> Upgrade:
    return Upgrade(
        id=f"{kind.value}_tier_{tier}",
        kind=kind,
        name=name,
        benefit=Decimal(benefit),
        base_cost=Decimal(base_cost),
    )


_CATALOG: tuple[Upgrade, ...] = (
    _tier(UpgradeKind.CLICK, 1, "Sharper Finger", "0.000000001", "0.000000064"),
    _tier(UpgradeKind.CLICK, 2, "Double Tap", "0.000000005", "0.000000512"),
    _tier(UpgradeKind.CLICK, 3, "Power Glove", "0.000000025", "0.000004096"),
    _tier(UpgradeKind.CLICK, 4, "Mech Hand", "0.000000125", "0.000032768"),
    _tier(UpgradeKind.CLICK, 5, "Quantum Tap", "0.000000625", "0.000262144"),
    _tier(UpgradeKind.AUTO, 1, "Clockwork Mouse", "0.000000001", "0.000000128"),
    _tier(UpgradeKind.AUTO, 2, "Script Kiddie", "0.000000005", "0.000001024"),
    _tier(UpgradeKind.AUTO, 3, "Click Farm", "0.000000025", "0.000008192"),
    _tier(UpgradeKind.AUTO, 4, "Server Rack", "0.000000125", "0.000065536"),
    _tier(UpgradeKind.AUTO, 5, "Data Center", "0.000000625", "0.000524288"),
    _tier(UpgradeKind.OFFLINE, 1, "Piggy Bank", "0.000000036", "0.000000256"),
    _tier(UpgradeKind.OFFLINE, 2, "Savings Jar", "0.000000180", "0.000002048"),
    _tier(UpgradeKind.OFFLINE, 3, "Night Shift", "0.000000900", "0.000016384"),
    _tier(UpgradeKind.OFFLINE, 4, "Trust Fund", "0.000004500", "0.000131072"),
    _tier(UpgradeKind.OFFLINE, 5, "Offshore Vault", "0.000022500", "0.001048576"),
)

UPGRADES = MappingProxyType({upgrade.id: upgrade for upgrade in _CATALOG})


def get_upgrade(upgrade_id: str) -> Upgrade | None:
    return UPGRADES.get(str(upgrade_id or "").strip().lower())

"""Default item data for the town: what can be eaten, traded, grown and found.

The core only depends on the shape of this data; a world can be built with
any catalog that provides the same mappings.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from town_sim.utils.types import ItemType


@dataclass(frozen=True)
class Catalog:
    hunger_restore: dict[ItemType, float] = field(default_factory=dict)
    shop_buy_prices: dict[ItemType, int] = field(default_factory=dict)
    """Price a resident pays the shop."""
    shop_sell_prices: dict[ItemType, int] = field(default_factory=dict)
    """Price the shop pays a resident."""
    fish_weights: dict[ItemType, float] = field(default_factory=dict)
    mineral_weights: dict[ItemType, float] = field(default_factory=dict)
    seed_to_crop: dict[ItemType, ItemType] = field(default_factory=dict)
    crop_growth_s: dict[ItemType, float] = field(default_factory=dict)
    crop_yield: dict[ItemType, int] = field(default_factory=dict)

    def is_edible(self, item: ItemType) -> bool:
        return self.hunger_restore.get(item, 0.0) > 0.0

    def cheapest_food(self) -> tuple[ItemType, int] | None:
        offers = [
            (price, item.value, item)
            for item, price in self.shop_buy_prices.items()
            if self.is_edible(item)
        ]
        if not offers:
            return None
        price, _, item = min(offers)
        return item, price


DEFAULT_CATALOG = Catalog(
    hunger_restore={
        ItemType.CROP_WHEAT: 25.0,
        ItemType.CROP_RICE: 35.0,
        ItemType.CROP_CARROT: 15.0,
        ItemType.CROP_BEET: 20.0,
        ItemType.FISH_COMMON: 20.0,
        ItemType.FISH_RARE: 30.0,
        ItemType.FISH_SILVER: 30.0,
        ItemType.FISH_GOLDEN: 40.0,
        ItemType.FISH_LEGENDARY: 60.0,
    },
    shop_buy_prices={
        ItemType.SEED_WHEAT: 5,
        ItemType.SEED_RICE: 8,
        ItemType.SEED_CARROT: 3,
        ItemType.SEED_BEET: 6,
        ItemType.CROP_WHEAT: 20,
        ItemType.CROP_CARROT: 14,
        ItemType.FISH_COMMON: 12,
    },
    shop_sell_prices={
        ItemType.CROP_WHEAT: 15,
        ItemType.CROP_RICE: 25,
        ItemType.CROP_CARROT: 10,
        ItemType.CROP_BEET: 20,
        ItemType.FISH_COMMON: 8,
        ItemType.FISH_RARE: 20,
        ItemType.FISH_SILVER: 40,
        ItemType.FISH_GOLDEN: 80,
        ItemType.FISH_LEGENDARY: 200,
        ItemType.MINERAL_COPPER: 15,
        ItemType.MINERAL_IRON: 30,
        ItemType.MINERAL_SILVER: 60,
        ItemType.MINERAL_GOLD: 150,
    },
    fish_weights={
        ItemType.FISH_COMMON: 60.0,
        ItemType.FISH_RARE: 25.0,
        ItemType.FISH_SILVER: 10.0,
        ItemType.FISH_GOLDEN: 4.0,
        ItemType.FISH_LEGENDARY: 1.0,
    },
    mineral_weights={
        ItemType.MINERAL_COPPER: 55.0,
        ItemType.MINERAL_IRON: 30.0,
        ItemType.MINERAL_SILVER: 12.0,
        ItemType.MINERAL_GOLD: 3.0,
    },
    seed_to_crop={
        ItemType.SEED_WHEAT: ItemType.CROP_WHEAT,
        ItemType.SEED_RICE: ItemType.CROP_RICE,
        ItemType.SEED_CARROT: ItemType.CROP_CARROT,
        ItemType.SEED_BEET: ItemType.CROP_BEET,
    },
    crop_growth_s={
        ItemType.CROP_WHEAT: 2 * 3600.0,
        ItemType.CROP_RICE: 3 * 3600.0,
        ItemType.CROP_CARROT: 1 * 3600.0,
        ItemType.CROP_BEET: 2 * 3600.0,
    },
    crop_yield={
        ItemType.CROP_WHEAT: 3,
        ItemType.CROP_RICE: 3,
        ItemType.CROP_CARROT: 2,
        ItemType.CROP_BEET: 2,
    },
)

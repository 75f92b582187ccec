"""Environmental impact of rescued food.

Pure functions: no I/O, same inputs always give the same figures.
"""

import math
import typing as t
from dataclasses import dataclass

# kg CO2 emitted per kg of food produced
CO2_EMISSION_FACTORS: t.Dict[str, float] = {
    "meat": 14.8,
    "poultry": 6.9,
    "fish": 5.4,
    "dairy": 3.2,
    "cheese": 13.5,
    "vegetables": 2.0,
    "fruits": 1.1,
    "grains": 1.4,
    "bread": 1.6,
    "prepared": 3.5,
    "default": 2.5,
}

# litres of water used per kg of food produced
WATER_USAGE_FACTORS: t.Dict[str, float] = {
    "meat": 15415,
    "poultry": 4325,
    "fish": 3500,
    "dairy": 1000,
    "cheese": 3178,
    "vegetables": 287,
    "fruits": 962,
    "grains": 1644,
    "bread": 1608,
    "prepared": 1500,
    "default": 1000,
}

# Checked in order; cheese before dairy so "cream cheese" counts as cheese.
CATEGORY_KEYWORDS: t.Tuple[t.Tuple[str, t.Tuple[str, ...]], ...] = (
    ("meat", ("meat", "beef", "pork", "lamb", "mutton")),
    ("poultry", ("chicken", "turkey", "duck", "poultry")),
    ("fish", ("fish", "salmon", "tuna", "seafood")),
    ("cheese", ("cheese", "cheddar", "mozzarella")),
    ("dairy", ("milk", "yogurt", "dairy", "cream", "butter")),
    (
        "vegetables",
        (
            "vegetable",
            "carrot",
            "broccoli",
            "lettuce",
            "spinach",
            "tomato",
            "salad",
        ),
    ),
    ("fruits", ("fruit", "apple", "banana", "orange", "grape", "berry")),
    ("bread", ("bread", "baguette", "roll", "loaf", "toast")),
    ("grains", ("rice", "pasta", "grain", "cereal", "oats")),
    (
        "prepared",
        (
            "meal",
            "prepared",
            "cooked",
            "curry",
            "stew",
            "soup",
            "sandwich",
            "pizza",
        ),
    ),
)

# kg per unit; count-based units use an average item weight
UNIT_TO_KG: t.Dict[str, float] = {
    "kg": 1,
    "kilogram": 1,
    "kilograms": 1,
    "g": 0.001,
    "gram": 0.001,
    "grams": 0.001,
    "lb": 0.453592,
    "lbs": 0.453592,
    "pound": 0.453592,
    "pounds": 0.453592,
    "oz": 0.0283495,
    "ounce": 0.0283495,
    "ounces": 0.0283495,
    "l": 1,
    "liter": 1,
    "liters": 1,
    "ml": 0.001,
    "milliliter": 0.001,
    "milliliters": 0.001,
    "piece": 0.1,
    "pieces": 0.1,
    "unit": 0.1,
    "units": 0.1,
    "item": 0.1,
    "items": 0.1,
    "serving": 0.25,
    "servings": 0.25,
    "portion": 0.3,
    "portions": 0.3,
    "plate": 0.4,
    "plates": 0.4,
    "bowl": 0.3,
    "bowls": 0.3,
}
DEFAULT_KG_PER_UNIT: float = 0.1
SERVING_SIZE_KG: float = 0.25
POINTS_PER_KG: int = 10

# (exclusive upper bound of points, level)
LEVEL_THRESHOLDS: t.Tuple[t.Tuple[int, int], ...] = (
    (100, 1),
    (500, 2),
    (1000, 3),
    (2500, 4),
)
MAX_LEVEL: int = 5


@dataclass(frozen=True)
class EnvironmentalImpact:
    """Impact of keeping a quantity of food out of the bin."""

    quantity_kg: float
    co2_saved: float
    water_saved: float
    people_served: int


def determine_food_category(food_name: str | None) -> str:
    """Guess the impact category of a food from its name.

    Args:
        food_name (str | None): Free-text food name or description.

    Returns:
        str: A key of ``CO2_EMISSION_FACTORS``.
    """
    name: str = (food_name or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return category
    return "default"


def convert_to_kg(quantity: float, unit: str | None) -> float:
    """Convert a quantity in any supported unit to kilograms.

    Args:
        quantity (float): The quantity.
        unit (str | None): The unit; unknown units count as 100 g each.

    Returns:
        float: The quantity in kilograms.
    """
    if not unit:
        return quantity * DEFAULT_KG_PER_UNIT
    return quantity * UNIT_TO_KG.get(unit.strip().lower(), DEFAULT_KG_PER_UNIT)


def calculate_co2_reduction(
    quantity_kg: float, category: str = "default"
) -> float:
    """CO2 (kg) avoided by rescuing a quantity of food.

    Args:
        quantity_kg (float): Quantity in kilograms.
        category (str): Impact category.

    Returns:
        float: CO2 saved, rounded to two decimals.
    """
    factor: float = CO2_EMISSION_FACTORS.get(
        category, CO2_EMISSION_FACTORS["default"]
    )
    return round(quantity_kg * factor, 2)


def calculate_water_saved(
    quantity_kg: float, category: str = "default"
) -> float:
    """Water (litres) saved by rescuing a quantity of food.

    Args:
        quantity_kg (float): Quantity in kilograms.
        category (str): Impact category.

    Returns:
        float: Litres saved, rounded to the nearest litre.
    """
    factor: float = WATER_USAGE_FACTORS.get(
        category, WATER_USAGE_FACTORS["default"]
    )
    return float(round(quantity_kg * factor))


def calculate_people_served(quantity_kg: float) -> int:
    """Number of 250 g servings in a quantity of food."""
    if quantity_kg <= 0:
        return 0
    return math.floor(quantity_kg / SERVING_SIZE_KG + 1e-9)


def environmental_impact(
    quantity: float, unit: str | None, food_name: str | None = None
) -> EnvironmentalImpact:
    """Compute the full impact summary for a rescued quantity.

    Args:
        quantity (float): Quantity in ``unit``.
        unit (str | None): Unit of the quantity.
        food_name (str | None): Optional food name to pick the category.

    Returns:
        EnvironmentalImpact: CO2, water and people-served figures.
    """
    quantity_kg: float = convert_to_kg(quantity, unit)
    category: str = determine_food_category(food_name)
    return EnvironmentalImpact(
        quantity_kg=quantity_kg,
        co2_saved=calculate_co2_reduction(quantity_kg, category),
        water_saved=calculate_water_saved(quantity_kg, category),
        people_served=calculate_people_served(quantity_kg),
    )


def points_for(quantity_kg: float) -> int:
    """Points earned for a quantity of food shared or received."""
    return math.floor(quantity_kg * POINTS_PER_KG)


def level_for(points: int) -> int:
    """Map accumulated points to a user level.

    Args:
        points (int): Total points.

    Returns:
        int: Level from 1 to ``MAX_LEVEL``.
    """
    for upper_bound, level in LEVEL_THRESHOLDS:
        if points < upper_bound:
            return level
    return MAX_LEVEL

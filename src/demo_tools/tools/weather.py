"""Canned weather tools."""

from __future__ import annotations

from ..schemas import CoolestCitiesInput, WeatherInput

_FOGGY = {"sf", "san francisco"}


def get_weather(payload: WeatherInput) -> str:
    if payload.location.lower() in _FOGGY:
        return "It's 60 degrees and foggy."
    return "It's 90 degrees and sunny."


def get_coolest_cities(_payload: CoolestCitiesInput) -> str:
    return "nyc, sf"

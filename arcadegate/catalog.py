"""Game catalog served by GET /api/games.

The catalog is static content. The built-in list below is used unless
``catalog.games`` in the config file replaces it.
"""

from __future__ import annotations

from typing import Any

DEFAULT_GAMES: tuple[dict[str, Any], ...] = (
    {"id": 1, "title": "A Small World Cup", "url": "/games/a_small_world_cup.html", "description": "Fun soccer game!"},
    {"id": 2, "title": "PolyTrack", "url": "/games/PolyTrack.html", "description": "Racing game"},
    {"id": 3, "title": "Ragdoll Archers", "url": "/games/ragdoll_archers.html", "description": "Archery game"},
    {"id": 4, "title": "Cookie Clicker", "url": "/games/cookie-clicker.html", "description": "Click a Cookie!"},
    {"id": 5, "title": "Basket Random", "url": "/games/basketrandom.html", "description": "Random, Fun, Basketball game!"},
    {"id": 6, "title": "Retro Bowl College", "url": "/games/retrobowlcollege.html", "description": "College Football game!"},
    {"id": 7, "title": "Crossy Road", "url": "/games/crossyroad.html", "description": "Classic Crossy Road game!"},
    {"id": 8, "title": "Slow Roads", "url": "/games/slowroads.html", "description": "Zen Driving game!"},
    {"id": 9, "title": "Friday Night Funkin", "url": "/games/fridaynightfunkin.html", "description": "Music Battle Game!"},
)


def catalog_entries(games: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Project configured entries onto the public {id, title, url, description} shape."""
    return [
        {
            "id": game.get("id"),
            "title": game.get("title"),
            "url": game.get("url"),
            "description": game.get("description", ""),
        }
        for game in games
    ]

from __future__ import annotations

from dataclasses import dataclass

COLOR_KEYWORDS: frozenset[str] = frozenset(
    {
        # base
        "white",
        "black",
        "red",
        "blue",
        "green",
        "yellow",
        "pink",
        "purple",
        "orange",
        "brown",
        "gray",
        "grey",
        "gold",
        "silver",
        "beige",
        "nude",
        # red shades
        "crimson",
        "scarlet",
        "burgundy",
        "wine",
        "cherry",
        "ruby",
        "maroon",
        "coral",
        # blue shades
        "navy",
        "azure",
        "teal",
        "turquoise",
        "cobalt",
        "indigo",
        "cyan",
        "aqua",
        # green shades
        "emerald",
        "olive",
        "mint",
        "sage",
        "forest",
        "lime",
        "jade",
        # pink and purple shades
        "magenta",
        "fuchsia",
        "lavender",
        "violet",
        "mauve",
        "plum",
        "rose",
        "blush",
        # other shades
        "cream",
        "ivory",
        "tan",
        "khaki",
        "champagne",
        "bronze",
        "copper",
        "peach",
        # german
        "weiß",
        "schwarz",
        "rot",
        "blau",
        "grün",
        "gelb",
        "rosa",
        "lila",
    }
)

VISUAL_HINT_WORDS: frozenset[str] = frozenset(
    {"photo", "image", "picture", "video", "wearing", "person", "woman", "man"}
)

MIN_OBJECT_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class KeywordSet:
    colors: tuple[str, ...]
    objects: tuple[str, ...]
    all: tuple[str, ...]

    @property
    def has_colors(self) -> bool:
        return bool(self.colors)

    @property
    def has_objects(self) -> bool:
        return bool(self.objects)

    def is_visual_search(self) -> bool:
        if self.colors:
            return True
        return any(word in VISUAL_HINT_WORDS for word in self.all)


def extract_keywords(query: str) -> KeywordSet:
    """Split a query into color tokens and object tokens.

    Every token is classified on its own: "light blue" yields the object
    "light" and the color "blue".
    """
    words = tuple(query.lower().split())
    colors = tuple(word for word in words if word in COLOR_KEYWORDS)
    objects = tuple(
        word
        for word in words
        if word not in COLOR_KEYWORDS and len(word) >= MIN_OBJECT_TOKEN_LENGTH
    )
    return KeywordSet(colors=colors, objects=objects, all=words)

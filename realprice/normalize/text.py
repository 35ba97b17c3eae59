"""Product-name normalization."""


def normalize_name(name: str) -> str:
    """
    Normalize a product name into its catalog match key.

    Trim and lowercase only: no stemming, no locale-aware collation and no
    punctuation stripping.
    """
    return name.strip().lower()


def ai_hint_from_name(name: str, words: int = 2) -> str:
    """Image-search hint built from the first words of a product name."""
    return " ".join(name.lower().split(" ")[:words])

"""Deckshow: turn uploaded PDF decks into versioned slideshows."""

__version__ = "0.1.0"

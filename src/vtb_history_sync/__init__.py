"""Incremental VTB Online history scraper."""

__version__ = "0.1.0"

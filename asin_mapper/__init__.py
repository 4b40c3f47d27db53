"""Amazon ASIN mapper: brand and keyword to product mapping via browser automation."""

__version__ = "1.0.0"

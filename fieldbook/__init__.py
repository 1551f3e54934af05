"""Reservation and availability engine for bookable sports fields."""

__version__ = "0.1.0"

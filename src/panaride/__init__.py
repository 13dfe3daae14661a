"""Fare liquidation and driver matching core for the Pana ride-hailing platform."""

__version__ = "0.1.0"

"""TartanTrips - airport rideshare matching backend."""

__version__ = "1.0.0"

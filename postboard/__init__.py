"""Postboard: data access for users, posts and comments behind a Redis cache."""

__version__ = "1.0.0"

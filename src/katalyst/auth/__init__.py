"""User sessions and stored Google tokens."""

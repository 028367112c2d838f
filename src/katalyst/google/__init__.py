"""Google OAuth and Calendar API access."""

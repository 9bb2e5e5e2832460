"""Clients for remote services the kiosk talks to."""

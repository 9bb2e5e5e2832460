"""Hardware inputs attached to the kiosk."""

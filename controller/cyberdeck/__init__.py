"""Badge-scan leaderboard controller for the cyberdeck kiosk."""

__version__ = "1.0.0"

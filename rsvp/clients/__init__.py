"""Clients for the services RSVPs are stored in."""

"""Gig marketplace service."""

"""Proximity matching and live coordination core."""

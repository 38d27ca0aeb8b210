"""Assist service application."""

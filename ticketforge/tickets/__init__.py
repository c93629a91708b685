"""Ticket modes and assembly."""

"""Ambient infrastructure shared by every contactbook module."""

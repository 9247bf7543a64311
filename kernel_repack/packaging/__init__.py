"""Systemless module packaging for the built kernel modules."""

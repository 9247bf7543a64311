"""Kernel compilation for a device variant."""

"""Partition image assembly and verification-metadata rebuild.

This module handles:
- The shared staging directory lifecycle
- Splicing the new kernel/DTB/header fields into stock images
- Hash footers and the rebuilt, re-signed vbmeta image
"""

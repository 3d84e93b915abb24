# Copyright (c) Syntropy Systems
"""Command line interface for mlfuzz."""

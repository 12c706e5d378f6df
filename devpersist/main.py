#!/usr/bin/env python3
"""
Main entry point for the devpersist CLI.

Delegates to the UI layer in devpersist.ui.cli to keep the console
script mapping stable.
"""

from devpersist.ui.cli import run as devpersist


if __name__ == "__main__":
    devpersist()

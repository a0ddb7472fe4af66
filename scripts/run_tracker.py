#!/usr/bin/env python3
"""Launcher for the circuit tracker (same flags as `python -m circuitwatch.main`)."""
from __future__ import annotations

import sys

from circuitwatch.main import main

if __name__ == "__main__":
    sys.exit(main())

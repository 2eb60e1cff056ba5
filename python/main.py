#!/usr/bin/env python3
"""
Run docker-gc from a source checkout without installing it.

    python python/main.py --force --dry-run
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from docker_gc.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())

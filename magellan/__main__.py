"""
Magellan - Module Entry Point.

Allows running magellan as a module:
    python -m magellan scan --subnet 172.16.0.0/24
    python -m magellan collect --host https://smd.example.com
"""

import sys

from magellan.cli import main

if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python3
"""Entry point for hexci CLI when run as python -m hexci.cli."""

if __name__ == "__main__":
    from hexci.cli.main import main

    main()

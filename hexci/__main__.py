"""Entry point for ``python -m hexci``."""

from hexci.cli.main import main

if __name__ == "__main__":
    main()

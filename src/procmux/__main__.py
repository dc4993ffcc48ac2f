"""Module entry point for `python -m procmux`."""

from procmux.cli.main import main

if __name__ == "__main__":
    main()

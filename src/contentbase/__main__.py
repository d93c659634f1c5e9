"""Entry point for the 'python -m contentbase' command."""

from contentbase.cli import main

if __name__ == "__main__":
    main()

"""
Entry point for running TreeVault as a module.

Usage:
    python -m treevault [command] [options]
"""

from treevault.cli import main

if __name__ == "__main__":
    main()

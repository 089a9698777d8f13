"""
Entry point for running CreditSwap as a module.

Usage:
    python -m creditswap_api
"""

from creditswap_api.cli import main

if __name__ == "__main__":
    main()

"""
Entry point for running the registrar as a module.

Usage:
    python -m subtensor_registrar
"""

from subtensor_registrar.cli import main

if __name__ == "__main__":
    main()

"""
Entry point for running the scanner with ``python -m kubescan.ecr``.
"""

from .cli import main


main()

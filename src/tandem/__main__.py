"""Allow ``python -m tandem``."""

from .cli import main

main()

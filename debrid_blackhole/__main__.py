"""Allow ``python -m debrid_blackhole``."""

from .cli import main

if __name__ == "__main__":
    main()

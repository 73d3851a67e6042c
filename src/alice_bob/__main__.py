"""Allow ``python -m alice_bob``."""

from .cli import main

if __name__ == "__main__":
    main()

"""Package entry point for ``python -m upload_ai``.

Delegates to the CLI's main() function.
"""

from upload_ai.cli import main

if __name__ == "__main__":
    main()

"""Entry point for Snap Sync.

Usage:
    python -m snap_sync start [-c PATH]   Run the uploader in the foreground
    python -m snap_sync check [-c PATH]   Validate config and probe connections
"""

import sys


def main() -> None:
    """Delegate to the service CLI."""
    from snap_sync.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()

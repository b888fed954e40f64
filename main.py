"""
Push Notification Server: Entry Point

Usage:
    python main.py generate-vapid   # Print a fresh VAPID keypair
    python main.py                  # Start the API server (needs VAPID_*, ADMIN_KEY)
"""

import argparse

import uvicorn

from config.settings import settings
from notifications.vapid import generate_vapid_keys


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Topic-addressed Web Push server")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "generate-vapid"],
    )
    args = parser.parse_args(argv)

    if args.command == "generate-vapid":
        public_key, private_key = generate_vapid_keys()
        print(f"VAPID_PUBLIC_KEY={public_key}")
        print(f"VAPID_PRIVATE_KEY={private_key}")
        return

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

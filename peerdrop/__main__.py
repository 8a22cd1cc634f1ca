"""
Main entry point for the relay server.
Run with: python -m peerdrop
"""
import asyncio

from peerdrop.relay.server import main


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

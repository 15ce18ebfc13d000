#!/usr/bin/python3

import handlers  # noqa: F401
from manager import manager


async def main():
    manager.setup()

    try:
        manager.is_running = True

        await manager.start()
    except KeyboardInterrupt:
        await manager.stop()
    except InterruptedError:
        await manager.stop()


def run():
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run()

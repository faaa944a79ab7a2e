"""Entry point for `python -m agentpod.watchdog`."""

from agentpod.watchdog import main

if __name__ == "__main__":
    main()

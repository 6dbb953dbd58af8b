"""Entry point for running the harness as a module.

Usage:
    python -m agentgate.harness
"""

from agentgate.harness.server import main

if __name__ == "__main__":
    main()

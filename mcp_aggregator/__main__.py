"""Allow ``python -m mcp_aggregator``."""

from mcp_aggregator.cli import main

if __name__ == "__main__":
    main()

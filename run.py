#!/usr/bin/env python3
"""
Cooperative Banking Engine Entry Point

Starts the FastAPI server on the configured host and port.
"""

import sys

from coop_banking.api import run_server
from coop_banking.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Cooperative Banking Engine...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Cooperative Banking Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

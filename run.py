#!/usr/bin/env python3
"""
Cheque Bank Entry Point

Starts the FastAPI server for the cheque settlement engine.
"""

import sys

from cheque_bank.api import run_server
from cheque_bank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Cheque Bank settlement service...")
    print(f"Settlement identity: {config.bank_address}")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Cheque Bank...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

#!/usr/bin/env python3
"""Run the Tube Orchestrator API server with its background worker"""

import sys
from pathlib import Path

import uvicorn

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from tube_orchestrator.config import get_config


def main():
    """Run the FastAPI server"""
    config = get_config()
    host = config.get("server.host", "127.0.0.1")
    port = config.get("server.port", 8008)
    log_level = config.get("server.log_level", "info")

    print("Starting Tube Orchestrator")
    print(f"Server: {host}:{port}")
    print(f"Log level: {log_level}")
    print(f"Text provider: {config.get('providers.text.provider', 'mock')}")
    print(f"Queue capacity: {config.get('queue.capacity', 100)}")
    print("-" * 50)

    # Single process: the job queue and worker live in this server
    uvicorn.run(
        "tube_orchestrator:app",
        host=host,
        port=port,
        log_level=log_level,
        workers=1,
    )


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Queue-Pilot Server Entry Point

MCP server for RabbitMQ / Kafka message inspection with JSON Schema
validation.

Run this script from a checkout to start the MCP server:
    python run_queue_pilot.py --schemas ./schemas

Or configure in .cursor/mcp.json:
    {
        "mcpServers": {
            "queue-pilot": {
                "command": "python",
                "args": ["run_queue_pilot.py", "--schemas", "./schemas"],
                "cwd": "${workspaceFolder}"
            }
        }
    }
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from queue_pilot.server import main

if __name__ == "__main__":
    main()

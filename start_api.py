#!/usr/bin/env python3
"""
Startup script for the Are.na Taste API.
"""

import uvicorn

if __name__ == "__main__":
    print("Starting Are.na Taste API...")
    print("API Documentation: http://localhost:8000/docs")
    print("Health Check: http://localhost:8000/health")
    print("\nPress CTRL+C to stop\n")

    uvicorn.run(
        "arena_taste.api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

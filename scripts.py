#!/usr/bin/env python3
"""Development scripts for the Hotel Reservation Engine."""

import subprocess
import sys


def start():
    """Start the development server."""
    subprocess.run([
        "uvicorn",
        "hotel_reservation_engine.main:app",
        "--host", "0.0.0.0",
        "--port", "3000",
        "--reload"
    ])


def worker():
    """Start a Celery worker with the beat scheduler embedded."""
    subprocess.run([
        "celery",
        "-A", "hotel_reservation_engine.tasks.celery_app",
        "worker",
        "--beat",
        "--loglevel", "info"
    ])


def lint():
    """Run linting and type checking."""
    subprocess.run(["black", "hotel_reservation_engine/", "tests/"])
    subprocess.run(["mypy", "hotel_reservation_engine/"])


def format_code():
    """Format code with black."""
    subprocess.run(["black", "hotel_reservation_engine/", "tests/"])


def test():
    """Run the test suite."""
    result = subprocess.run(["pytest", *sys.argv[2:]])
    sys.exit(result.returncode)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, lint, format, test")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if command == "format":
        command = "format_code"
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)

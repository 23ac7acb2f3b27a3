#!/usr/bin/env python3
"""
Test runner script for the FoodDash fulfillment service.
Selects test groups by pytest marker.
"""

import subprocess
import sys
import argparse


MARKERS = ("unit", "integration", "orders", "concurrency", "settlement")


def run_command(cmd):
    """Run a command and return the result."""
    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)

    if result.stdout:
        print(result.stdout)
    if result.stderr:
        print(result.stderr, file=sys.stderr)

    return result.returncode == 0


def main():
    parser = argparse.ArgumentParser(description="Run tests for the FoodDash fulfillment service")
    for marker in MARKERS:
        parser.add_argument(f"--{marker}", action="store_true", help=f"Run {marker} tests only")
    parser.add_argument("--coverage", action="store_true", help="Run with coverage report")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--file", help="Run specific test file")

    args = parser.parse_args()

    cmd = [sys.executable, "-m", "pytest"]

    if args.verbose:
        cmd.append("-v")

    if args.coverage:
        cmd.extend(["--cov=app", "--cov-report=term-missing"])

    selected = [marker for marker in MARKERS if getattr(args, marker)]
    if selected:
        cmd.extend(["-m", " or ".join(selected)])

    if args.file:
        cmd.append(f"app/test/{args.file}")

    success = run_command(cmd)

    if not success:
        print("Tests failed!")
        sys.exit(1)
    else:
        print("All tests passed!")


if __name__ == "__main__":
    main()

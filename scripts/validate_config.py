#!/usr/bin/env python3
"""
Solver Configuration Validator - check your .env configuration.

Usage:
    python scripts/validate_config.py                   # Validate ./.env + environment
    python scripts/validate_config.py --env-file solver.env
"""
import argparse
import sys

from dotenv import load_dotenv

from solver.config import SolverConfig
from solver.exceptions import ConfigurationException


class Colors:
    GREEN = '\033[92m'
    RED = '\033[91m'
    END = '\033[0m'


def colored(text: str, color: str) -> str:
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.END}"
    return text


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate solver configuration")
    parser.add_argument("--env-file", type=str, default=".env", help="Env file to load")
    args, rest = parser.parse_known_args()

    load_dotenv(args.env_file)
    try:
        config = SolverConfig.load(rest, dotenv=False)
    except ConfigurationException as e:
        print(colored(f"  ❌ {e}", Colors.RED))
        return 1

    problems = config.problems()
    for problem in problems:
        print(colored(f"  ❌ {problem}", Colors.RED))
    if problems:
        return 1

    print(colored("  ✅ Configuration looks valid", Colors.GREEN))
    print(f"  Order engine:     {config.order_engine_address}")
    print(f"  Payment API:      {config.bron_api_url}")
    print(f"  Poll budget:      {config.poll_max_attempts} x {config.poll_interval_seconds}s")
    print(f"  Require completed status: {config.require_completed_status}")
    if config.deposit_addresses:
        print(f"  Static deposit addresses: {', '.join(sorted(config.deposit_addresses))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

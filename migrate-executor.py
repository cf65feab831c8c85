#!/usr/bin/env python3
"""
Migrate Executor entry point.

Usage:
    python migrate-executor.py
"""

from migrate_executor.executor import main

if __name__ == "__main__":
    main()

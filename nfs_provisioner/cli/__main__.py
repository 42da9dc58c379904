#!/usr/bin/env python3
"""
Entry point for nfs-provisioner CLI tool.
"""

import sys

from nfs_provisioner.cli.cli import main

if __name__ == "__main__":
    sys.exit(main())

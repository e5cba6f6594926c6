#!/usr/bin/env python3
"""
Main execution module for the site relocation tool
"""

from site_relocator.cli.commands import main

if __name__ == "__main__":
    main()

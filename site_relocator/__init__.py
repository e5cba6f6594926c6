#!/usr/bin/env python3
"""
Site and database relocation tool
"""

__version__ = "0.1.0"

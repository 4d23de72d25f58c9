# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
# gyazocli - Gyazo Memory CLI
"""
gyazocli mirrors a Gyazo account's image metadata into a local, hour-partitioned
cache and computes rankings (apps, domains, tags, locations, upload times) over
arbitrary date windows without re-fetching already-seen data.
"""

__version__ = "1.0.0"
__author__ = "gyazocli"

# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.23
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/cli/__init__.py

"""Command Line Interface package for lvm-rescript."""

from .main import main, app

__all__ = ['main', 'app']

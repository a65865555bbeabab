# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.06.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/__init__.py

"""LVM snapshot backup and restore through restic."""

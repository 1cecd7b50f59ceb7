# MIT License
# Copyright (c) 2025 Hashborn

"""Epoch-based delegated-staking yield accounting engine."""

__version__ = "0.1.0"

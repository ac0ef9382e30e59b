"""
Deal Flow Engine

Core modules for tracking brokerage deals through escrow and
computing broker compensation.

Components:
  1. Date arithmetic and critical-date timeline derivation
  2. Commission and multi-broker split calculation
  3. Lifecycle state machine and reconciliation
  4. Pipeline board (status/column mapping) and dashboard summary

Usage:
    from deal_flow.core import Deal, derive_timeline, breakdown_for, reconcile
    from deal_flow.api import DealStorage, BrokerDirectory
"""

__version__ = "0.4.0"

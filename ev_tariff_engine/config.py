#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
config.py

Configuration constants and defaults for the EV tariff engine.

Key idea: the pricing core itself is pure
-----------------------------------------
Nothing in pricing/ or billing/ reads the environment. The values below are
defaults consumed by the loader, the batch re-pricer and the CLI, so a hosting
service can import the core without any of this being set.

Every value can be overridden through an EVTARIFF_* environment variable.
"""

import os
from decimal import Decimal

# ---------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------
# MONEY_QUANTUM:
# - All customer-facing amounts (subtotal, tax, total) are rounded half-up to
#   this quantum exactly once, on the aggregate.
MONEY_QUANTUM = Decimal("0.01")

# DEFAULT_CURRENCY:
# - Used by the loader when a tariff definition omits its currency.
# - The operator console defaults new tariffs to USD as well.
DEFAULT_CURRENCY = os.getenv("EVTARIFF_DEFAULT_CURRENCY", "USD")

# ---------------------------------------------------------------------
# Batch re-pricing
# ---------------------------------------------------------------------
# DEFAULT_BATCH_WORKERS:
# - How many sessions are priced at the same time by reprice_sessions().
# - Sessions are independent, so this only bounds thread usage.
DEFAULT_BATCH_WORKERS = int(os.getenv("EVTARIFF_BATCH_WORKERS", "6"))

# ---------------------------------------------------------------------
# CLI run artifacts
# ---------------------------------------------------------------------
# RUNS_DIR:
# - Root folder for per-run outputs (priced sessions, invoice, trace, logs).
# - Layout: <RUNS_DIR>/<output-prefix>/...
RUNS_DIR = os.getenv("EVTARIFF_RUNS_DIR", "runs")

# DEFAULT_LOG_LEVEL:
# - Level for logging.basicConfig in the CLI when --log-level is not given.
DEFAULT_LOG_LEVEL = os.getenv("EVTARIFF_LOG_LEVEL", "INFO")

# TRACE_ENABLED:
# - The CLI writes an audit trace (JSONL) for every run unless this is 0/false/no.
# - --trace on the command line forces it back on.
TRACE_ENABLED = os.getenv("EVTARIFF_TRACE", "1").strip().lower() not in {"0", "false", "no"}

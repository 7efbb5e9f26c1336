# config_local.example.py

"""
Example local overrides.

Usage:
  1) Copy this file to `config_local.py`
  2) Adjust values for your machine
  3) Never commit `config_local.py` (it is gitignored)

Prefer `.env` for anything else. Only these switches are read from here.
"""

# Example: run the periodic reconciler only, no REPL
# CONSOLE_ENABLED = False

# Example: keep the background reconciler off while experimenting in the console
# RECONCILE_ENABLED = False

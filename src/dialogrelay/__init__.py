"""dialogrelay -- Local event relay between a CLI and a browser dialog.

The browser cannot call back into the CLI process directly, so the CLI
runs a short-lived HTTP endpoint on the loopback interface. The dialog
publishes events to it, reads administrative data (public keys) from
it, and the CLI blocks on a correlated response with a bounded wait.
"""

__version__ = "0.1.0"

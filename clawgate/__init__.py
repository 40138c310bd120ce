"""clawgate - agent gateway core: session routing and cron scheduling."""

__version__ = "0.1.0"

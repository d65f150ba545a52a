"""Clinical health-metrics engine.

This package turns raw vital-sign readings into clinical status, trend
summaries and alerts, and keeps them in a session cache in front of the
remote metrics API.
"""

"""
Pipeline telemetry.

Prometheus counters for jobs, selections, backfill and the weight cache.
Recording is best-effort and never raises.
"""

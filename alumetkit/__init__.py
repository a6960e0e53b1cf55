"""Measurement sources and outputs for resource and energy monitoring."""

__version__ = "0.1.0"

__all__ = [
    "cgroupv2",
    "csv_helper",
    "csv_output",
    "influxdb_output",
    "jetson",
    "k8s",
    "k8s_probe",
    "line_protocol",
    "measurement",
    "oar2",
    "perf_events",
]
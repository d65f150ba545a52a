"""
Patient-portal integration for the health-metrics engine.

Provides the role-aware viewer a portal screen drives: which views to load on
open, who may see alerts, and what to refresh after a reading changes.
"""

from .viewer import PRIVILEGED_ROLES, AlertAccessDenied, PatientMetricsViewer, Role

__all__ = ["AlertAccessDenied", "PRIVILEGED_ROLES", "PatientMetricsViewer", "Role"]

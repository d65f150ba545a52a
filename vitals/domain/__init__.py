"""Domain models and errors for patient health metrics."""

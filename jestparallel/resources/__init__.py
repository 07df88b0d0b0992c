"""Files injected into the runner process."""

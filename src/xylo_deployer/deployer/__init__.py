"""GitHub-facing deployment logic, independent of the web layer."""

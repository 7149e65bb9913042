"""Research session orchestration."""

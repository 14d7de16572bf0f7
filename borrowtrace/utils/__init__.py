"""Export documents and logging helpers for borrowtrace."""

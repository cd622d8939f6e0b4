"""HTTP middleware: request context and last-resort error handling."""

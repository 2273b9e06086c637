"""Driver that exposes a local directory tree and outbound HTTP to remote callers."""

"""Module defining various global constants."""

# relayfs version
VERSION = "1.0.0"

# relayfs protocol
# The major version must be identical on client and server.
PROTOCOL_VERSION = "1.0.0"

# Special exit code for when relayfs itself fails.
RELAYFS_ERROR_CODE = 254

# Default endpoint of the command service.
DEFAULT_ENDPOINT = "tcp://127.0.0.1:7745"

# Block size used when streaming file contents (archives, uploads, downloads).
CHUNK_SIZE = 64 * 1024

# Interval in seconds between upload progress samples.
PROGRESS_INTERVAL = 0.25

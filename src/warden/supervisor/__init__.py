"""The supervisor loop and the workers it drives each heartbeat."""

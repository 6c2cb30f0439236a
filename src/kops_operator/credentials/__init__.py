"""Short-lived administrative credentials for managed clusters."""

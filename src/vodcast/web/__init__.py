"""HTTP surface of the channel."""

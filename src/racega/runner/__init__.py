"""Episode runtime, coordination and the training tick loop."""

"""Chainfeed: streaming block and mempool events from an EVM node."""

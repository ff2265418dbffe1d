"""Status API -- read-only bot status plus a manual rebalance trigger."""

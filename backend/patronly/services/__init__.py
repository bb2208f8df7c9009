"""Domain services for subscriptions, earnings and withdrawals."""

"""Bitcoin Cash primitives — keys, CashAddr, scripts, transactions, signing."""

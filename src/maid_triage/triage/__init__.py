"""Task state machine, outbox, ledger and the dispatch/no-show/ladder services."""

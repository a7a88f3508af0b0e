"""Adapters for the mailbox, the state index and upstream platforms."""

from .errors import TransactionStateError


class TransactionTracker:
    """Depth of the explicit transaction on a connection (0 or 1).

    SQLite transactions do not nest. ``sync`` realigns the depth with the
    engine's autocommit flag so SQL-level ``BEGIN``/``COMMIT`` and rollbacks
    the engine performs on its own are picked up.
    """

    def __init__(self):
        self.depth = 0

    @property
    def active(self):
        return self.depth > 0

    def sync(self, autocommit):
        self.depth = 0 if autocommit else 1

    def begin(self):
        if self.depth:
            raise TransactionStateError("cannot start a transaction within a transaction")
        self.depth = 1

    def end(self, verb="commit"):
        if not self.depth:
            raise TransactionStateError(f"cannot {verb} - no transaction is active")
        self.depth = 0

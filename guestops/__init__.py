"""guestops: guest roster import reconciliation and airport transport matching."""

__version__ = "0.1.0"

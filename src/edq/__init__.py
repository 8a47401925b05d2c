"""EdQuest rewards & economy ledger."""

__version__ = "0.1.0"

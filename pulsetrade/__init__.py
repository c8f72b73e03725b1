"""PulseTrade — rule-based periodic trading engine."""

__version__ = "0.1.0"

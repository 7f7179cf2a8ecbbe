"""Signal and strategy bot for 15-minute crypto up/down markets.

Prices the probability that the settlement reference finishes above the
market's opening strike with a closed-form log-normal model, compares it
with the market's quotes, and runs a per-market scalp/hold strategy on
the resulting edge.

Usage::

    python3 -m updown_bot --coin BTC --duration-minutes 30
"""

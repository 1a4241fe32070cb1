"""
                Order Tracker

Real-time order lifecycle tracking for a food-ordering marketplace.
Status changes are validated by a single state machine and fanned out
over WebSockets to the customer, the restaurant dashboard and the
system-stats view.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"

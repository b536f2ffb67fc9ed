"""CashuPay: self-hosted Lightning payment gateway backed by a Cashu ecash mint.

The package converts merchant amounts into the mint's accounting unit, follows
invoices through their payment lifecycle and notifies merchant integrations
with signed webhooks.
"""

__version__ = "0.1.0"

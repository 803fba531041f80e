"""
Billing app: prepaid wallet, message pricing and delivery settlement.

Sending a chargeable WhatsApp message moves its price from the wallet's
available balance into suspense. The provider's asynchronous delivery status
later settles the charge (delivered) or refunds it (failed).
"""

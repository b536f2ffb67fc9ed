"""Domain layer for the payment gateway.

Contains entities, value objects, enums and the invoice state machine.
"""

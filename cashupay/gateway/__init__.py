"""Invoice reconciliation and notification pipeline.

Exchange-rate conversion, the invoice lifecycle driven by mint quote polling,
and signed webhook delivery with an audit trail.
"""

"""
SDA Kernel - Funding drawdown and claims engine

The transactional core of the SDA provider platform:
- Collision-free sequential transaction and claim identifiers
- Contract eligibility for scheduled drawdowns
- Balance-safe drawdown transaction generation
- Claim packaging with compensating rollback
- Claim lifecycle and reconciliation state transitions
"""

__version__ = "0.1.0"

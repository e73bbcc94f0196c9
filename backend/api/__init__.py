"""
HTTP boundary for the Solana Data Gateway
"""

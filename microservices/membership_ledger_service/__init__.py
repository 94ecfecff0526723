"""
Membership Ledger Microservice

Membership and class-credit accounting for sports club players.
"""

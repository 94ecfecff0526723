"""Membership ledger test suites"""

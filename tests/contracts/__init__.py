"""Shared data contracts for the test suites"""

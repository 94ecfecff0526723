"""Unit tests: pure logic against in-memory fakes"""

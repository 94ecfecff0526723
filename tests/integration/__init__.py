"""Integration tests: require a running PostgreSQL"""

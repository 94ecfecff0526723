"""Component tests: service and API with mocked dependencies"""

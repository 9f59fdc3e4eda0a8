"""
Circuit Lifecycle Platform
Blueprint registry.

    circuit_bp  /api/v1/circuits  administration + lifecycle safety endpoints
"""

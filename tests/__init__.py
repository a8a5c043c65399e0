"""
Test Suite for NSE Adaptive Regime Trading System.

Comprehensive testing including:
- Unit tests for individual modules
- Integration tests for end-to-end flows
- Performance tests for latency-critical components
"""

__version__ = "0.1.0"


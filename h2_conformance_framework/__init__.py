"""
HTTP/2 Conformance Testing Framework

This package provides an adversarial client that sends rule-violating HTTP/2
frame sequences to a server under test and checks for the mandated errors.
"""

__version__ = "1.0.0"
__all__ = ['config', 'errors', 'frames', 'hpack_codec', 'session', 'expectations', 'classifier',
           'registry', 'results', 'runner', 'reports', 'local_adapter',
           'framing_tests', 'http_exchange_tests']

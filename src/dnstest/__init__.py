"""dnstest - DNS server latency and pollution tester.

This package probes DNS servers with ICMP echo under bounded concurrency,
streams progress to batch and live consumers, and compares system DNS
answers with public resolvers to detect tampering.
"""

from dnstest.__main__ import main

__all__ = ["main"]

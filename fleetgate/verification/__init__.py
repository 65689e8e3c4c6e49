"""Verification chains, sequence codes and identity views."""

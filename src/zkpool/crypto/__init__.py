"""Cryptographic primitives: field handling, Groth16 verification, development setup."""

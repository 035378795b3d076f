"""Adapters for Student-Audit.

This package contains the storage adapters that implement the StoragePort
interface on concrete databases.
"""

"""Operator DAO command-line tools."""

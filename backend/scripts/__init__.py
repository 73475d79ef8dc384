"""
Backend Scripts Module

This module contains utility scripts for database operations and maintenance.

Available scripts:
    - seed_data.py: Creates a sample org chart and leave approval workflow
    - validate_workflow.py: Checks a stored definition and prints its graph

Usage:
    python -m scripts.seed_data
"""

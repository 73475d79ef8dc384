"""
Approval engine tests.

unit/ covers the engine components and services against mongomock;
integration/ drives the full engine and the HTTP routes.
"""

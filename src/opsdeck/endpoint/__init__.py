"""HTTP endpoint module for opsdeck.

A thin FastAPI layer over the control surface: JSON request/response
routes for session commands and Server-Sent Events routes that stream
session output to the browser.
"""
